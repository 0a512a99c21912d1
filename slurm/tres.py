"""
Trackable resources (TRES) of slurm.

The accounting store keeps the resources requested and allocated to a job in a
compact form, "1=4,2=8192,4=1,1001=2", where each key is the id of a row of
tres_table. The ids are assigned by slurmdbd for each site, so they are always
read from the database instead of being hardcoded.
"""
import logging
from slurm.models import TresTable

logger = logging.getLogger(__name__)


def parse(tres):
    """
    Parse a TRES string into a list of (id, value) tuples, pairs that can't be
    parsed are ignored.
    """
    pairs = []
    if not tres:
        return pairs
    for item in tres.strip().split(','):
        key, sep, value = item.partition('=')
        if not sep:
            continue
        try:
            pairs.append((int(key.strip()), int(value.strip())))
        except ValueError:
            continue
    return pairs


def decode(tres, wanted_id):
    """Return the value of wanted_id in the TRES string, 0 if it is absent"""
    if wanted_id is None:
        return 0
    for key, value in parse(tres):
        if key == wanted_id:
            return value
    return 0


def decode_any(tres, ids):
    """Return the value of the first id of ids found in the TRES string"""
    values = dict(parse(tres))
    for wanted_id in ids:
        if wanted_id in values:
            return values[wanted_id]
    return 0


class TresRegistry:
    """Ids of the resources used by the adapter, as configured in tres_table"""

    def __init__(self, cpu=None, mem=None, node=None, gpus=()):
        self.cpu = cpu
        self.mem = mem
        self.node = node
        self.gpus = list(gpus)

    def __repr__(self):
        return 'TresRegistry(cpu={}, mem={}, node={}, gpus={})'.format(self.cpu, self.mem, self.node, self.gpus)

    @classmethod
    def load(cls, using='slurm'):
        registry = cls()
        for tres in TresTable.objects.using(using).filter(type__in=['cpu', 'mem', 'node']):
            setattr(registry, tres.type, tres.id)
        # gpus are generic resources, there is one row for each type of gpu
        registry.gpus = list(TresTable.objects.using(using)
                             .filter(type='gres', deleted=0)
                             .order_by('id')
                             .values_list('id', flat=True))
        logger.debug('Loaded {}'.format(registry))
        return registry

    def cpus(self, tres):
        return decode(tres, self.cpu)

    def mem_mb(self, tres):
        return decode(tres, self.mem)

    def nodes(self, tres):
        return decode(tres, self.node)

    def gpu_count(self, tres):
        return decode_any(tres, self.gpus)
