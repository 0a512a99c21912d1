"""
Queries on the accounting store of slurm (slurmdbd).

The job filters are compiled into a list of predicates, (column, operator,
value) tuples, that become the keyword arguments of a Django Q object. Values
are always bound as query parameters.
"""
import functools
import logging
from collections import namedtuple
from django.db import DatabaseError
from django.db.models import F, Func, Q, TextField
from slurmadapter.exceptions import Internal, InvalidArgument
from slurm.models import AcctTable, AssocTable, JobTable, QosTable, UserTable
from slurm.states import LIVE_STATES, state_id
from slurm.tres import TresRegistry

logger = logging.getLogger(__name__)

Predicate = namedtuple('Predicate', ['column', 'operator', 'value'])

LOOKUPS = {
    '=': 'exact',
    'in': 'in',
    '>=': 'gte',
    '<=': 'lte',
}

# sort fields of the RPC interface and their column
SORT_COLUMNS = {
    'job_id': 'id_job',
    'name': 'job_name',
    'account': 'account',
    'user': 'id_user',
    'partition': 'partition',
    'qos': 'id_qos',
    'state': 'state',
    'cpus_req': 'cpus_req',
    'mem_req_mb': 'mem_req',
    'time_limit_minutes': 'timelimit',
    'submit_time': 'time_submit',
    'start_time': 'time_start',
    'end_time': 'time_end',
    'nodes_alloc': 'nodes_alloc',
}
DEFAULT_SORT_COLUMN = 'job_db_inx'

# annotations of AccountingStore.jobs() holding the converted text columns
TEXT_COLUMNS = {
    'job_name': 'name_text',
    'work_dir': 'work_dir_text',
}


class JobFilter:
    """Filter of GetJobs, every criteria is optional and they are all combined"""

    def __init__(self, users=None, accounts=None, states=None, job_id=None, job_name=None,
                 submit_start=None, submit_end=None, end_start=None, end_end=None):
        self.users = list(users or [])
        self.accounts = list(accounts or [])
        self.states = [s.upper() for s in (states or [])]
        self.job_id = job_id
        self.job_name = job_name
        self.submit_start = submit_start
        self.submit_end = submit_end
        self.end_start = end_start
        self.end_end = end_end

    def state_ids(self):
        return [state_id(label) for label in self.states]

    def only_live_states(self):
        return bool(self.states) and all(code in LIVE_STATES for code in self.state_ids())


class Sort:
    def __init__(self, field=None, descending=False):
        self.field = field
        self.descending = descending

    def column(self):
        if not self.field:
            return DEFAULT_SORT_COLUMN
        if self.field not in SORT_COLUMNS:
            raise InvalidArgument('Can\'t sort on {}.'.format(self.field), reason='INVALID_SORT_FIELD')
        return SORT_COLUMNS[self.field]

    def order_by(self):
        if self.descending:
            return '-' + self.column()
        return self.column()


def page_bounds(page, page_size):
    """Return (offset, limit) for a 1-based page number"""
    if page < 1:
        page = 1
    return page_size * (page - 1), page_size


def build_predicates(job_filter, uids=None):
    predicates = []
    if job_filter.accounts:
        predicates.append(Predicate('account', 'in', job_filter.accounts))
    if uids is not None:
        predicates.append(Predicate('id_user', 'in', list(uids)))
    if job_filter.states:
        predicates.append(Predicate('state', 'in', job_filter.state_ids()))
    if job_filter.end_start is not None:
        predicates.append(Predicate('time_end', '>=', job_filter.end_start))
    if job_filter.end_end is not None:
        predicates.append(Predicate('time_end', '<=', job_filter.end_end))
    if job_filter.submit_start is not None:
        predicates.append(Predicate('time_submit', '>=', job_filter.submit_start))
    if job_filter.submit_end is not None:
        predicates.append(Predicate('time_submit', '<=', job_filter.submit_end))
    if job_filter.job_id is not None:
        predicates.append(Predicate('id_job', '=', job_filter.job_id))
    if job_filter.job_name is not None:
        predicates.append(Predicate('job_name', '=', job_filter.job_name))
    return predicates


def compile_predicates(predicates):
    q = Q()
    for predicate in predicates:
        q &= Q(**{'{}__{}'.format(predicate.column, LOOKUPS[predicate.operator]): predicate.value})
    return q


class Utf8Text(Func):
    """
    Reinterpret the bytes of a text column as utf8mb4, used when the tables of
    slurmdbd are declared in latin1 but contain utf8 strings.
    """
    template = 'CONVERT(CAST(%(expressions)s AS BINARY) USING utf8mb4)'
    output_field = TextField()

    def as_sqlite(self, compiler, connection, **extra_context):
        return compiler.compile(self.source_expressions[0])


def translate_db_errors(func):
    """Decorator to return the database errors as an Internal error"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DatabaseError as e:
            logger.error('{} failed: {}'.format(func.__name__, e))
            raise Internal(str(e), reason='SQL_QUERY_FAILED')
    return wrapper


class AccountingStore:
    def __init__(self, using='slurm', encoding='utf8mb4'):
        self.using = using
        self.encoding = encoding

    def convert_text(self):
        return 'utf8' not in self.encoding.lower()

    def _text(self, column):
        if self.convert_text():
            return Utf8Text(column)
        return F(column)

    def jobs(self):
        """Queryset of the jobs with the text columns readable in utf8"""
        return JobTable.objects.using(self.using).annotate(
            name_text=self._text('job_name'),
            work_dir_text=self._text('work_dir'),
        )

    def text_predicates(self, predicates):
        """Compare the text columns in their utf8 form when they are converted"""
        if not self.convert_text():
            return list(predicates)
        return [p._replace(column=TEXT_COLUMNS.get(p.column, p.column)) for p in predicates]

    @translate_db_errors
    def query_jobs(self, predicates, sort=None, page=None, with_count=False):
        """
        Return the jobs matching the predicates and, if with_count, the number
        of jobs matching them on all the pages.
        """
        if sort is None:
            sort = Sort()
        q = compile_predicates(self.text_predicates(predicates))
        queryset = self.jobs().filter(q).order_by(sort.order_by())
        total = queryset.count() if with_count else None
        if page is not None:
            offset, limit = page_bounds(*page)
            queryset = queryset[offset:offset + limit]
        return list(queryset), total

    @translate_db_errors
    def job_by_id(self, job_id):
        """Latest record of a job, None if slurmdbd does not know it"""
        return self.jobs().filter(id_job=job_id).order_by('-job_db_inx').first()

    @translate_db_errors
    def submit_info(self, job_ids):
        """Return {id_job: (time_submit, timelimit)} for the jobs"""
        info = {}
        rows = JobTable.objects.using(self.using).filter(id_job__in=list(job_ids))\
            .order_by('job_db_inx').values_list('id_job', 'time_submit', 'timelimit')
        for id_job, time_submit, timelimit in rows:
            info[id_job] = (time_submit, timelimit)
        return info

    @translate_db_errors
    def unfinished_timelimit(self, job_id):
        return JobTable.objects.using(self.using)\
            .filter(id_job=job_id, state__in=[int(s) for s in LIVE_STATES])\
            .values_list('timelimit', flat=True).first()

    @translate_db_errors
    def has_unfinished_jobs(self, uid, account):
        return JobTable.objects.using(self.using)\
            .filter(id_user=uid, account=account, state__in=[int(s) for s in LIVE_STATES])\
            .exists()

    @translate_db_errors
    def tres_registry(self):
        return TresRegistry.load(using=self.using)

    @translate_db_errors
    def qos_names(self):
        """Return {id: name} of the qos that are not deleted"""
        return dict(QosTable.objects.using(self.using).filter(deleted=0).order_by('id').values_list('id', 'name'))

    @translate_db_errors
    def qos_name(self, qos_id):
        return QosTable.objects.using(self.using).filter(id=qos_id).values_list('name', flat=True).first() or ''

    @translate_db_errors
    def user_exists(self, name):
        return UserTable.objects.using(self.using).filter(name=name, deleted=0).exists()

    @translate_db_errors
    def account_exists(self, name):
        return AcctTable.objects.using(self.using).filter(name=name, deleted=0).exists()

    def associations(self, user, account):
        return AssocTable.objects.using(self.using).filter(user=user, acct=account, deleted=0)

    @translate_db_errors
    def association_exists(self, user, account):
        return self.associations(user, account).exists()

    @translate_db_errors
    def max_submit_jobs(self, user, account):
        """Values of MaxSubmitJobs of the associations of an user in an account"""
        return list(self.associations(user, account).values_list('max_submit_jobs', flat=True))

    @translate_db_errors
    def accounts(self):
        return list(AcctTable.objects.using(self.using).filter(deleted=0).order_by('name').values_list('name', flat=True))

    @translate_db_errors
    def accounts_of_user(self, user):
        return list(AssocTable.objects.using(self.using)
                    .filter(user=user, deleted=0)
                    .order_by('acct')
                    .values_list('acct', flat=True)
                    .distinct())

    @translate_db_errors
    def associated_accounts(self, exclude=None):
        """Accounts having an association on the cluster, in the order of the associations"""
        queryset = AssocTable.objects.using(self.using).filter(deleted=0).exclude(acct='')
        if exclude is not None:
            queryset = queryset.exclude(acct=exclude)
        accounts = []
        for acct in queryset.order_by('id_assoc').values_list('acct', flat=True):
            if acct not in accounts:
                accounts.append(acct)
        return accounts

    @translate_db_errors
    def users_of_account(self, account):
        """Return [(user, blocked)] for the users of an account"""
        users = {}
        queryset = AssocTable.objects.using(self.using)\
            .filter(acct=account, deleted=0).exclude(user='').order_by('user', 'id_assoc')
        for assoc in queryset:
            users[assoc.user] = users.get(assoc.user, False) or assoc.is_blocked()
        return list(users.items())
