import os
import tempfile
from django.test import SimpleTestCase, override_settings
from tests.tests import CustomTestCase
from slurmadapter.context import ClusterConfig, load_partition_descriptions
from slurm.scheduler import CommandResult

PARTITIONS = (
    'PartitionName=compute AllowGroups=ALL AllowAccounts=ALL AllowQos=ALL QoS=N/A Nodes=cn[001-002] '
    'State=UP TotalCPUs=64 TotalNodes=2 TRES=cpu=64,mem=500G,node=2,billing=64\n'
    'PartitionName=gpu AllowGroups=ALL AllowAccounts=acme AllowQos=normal,gpu QoS=N/A Nodes=gn[001-002] '
    'State=UP TotalCPUs=64 TotalNodes=2 TRES=cpu=64,mem=1000000M,node=2,billing=64,gres/gpu=8\n'
)

NODE_CN001 = (
    'NodeName=cn001 Arch=x86_64 CoresPerSocket=16 CPUAlloc=8 CPUTot=32 CPULoad=7.95 '
    'AvailableFeatures=(null) Gres=(null) NodeAddr=cn001 RealMemory=256000 AllocMem=64000 '
    'FreeMem=180000 Sockets=2 State=MIXED ThreadsPerCore=1 Partitions=compute '
    'CfgTRES=cpu=32,mem=250G,billing=32 AllocTRES=cpu=8,mem=64000M\n'
)
NODE_GN001 = (
    'NodeName=gn001 Arch=x86_64 CoresPerSocket=16 CPUAlloc=0 CPUTot=32 CPULoad=0.01 '
    'AvailableFeatures=(null) Gres=gpu:a100:4 NodeAddr=gn001 RealMemory=512000 AllocMem=0 '
    'FreeMem=500000 Sockets=2 State=IDLE+DRAIN ThreadsPerCore=1 Partitions=gpu '
    'CfgTRES=cpu=32,mem=500G,billing=32,gres/gpu=4 AllocTRES=\n'
)


class ConfigTestCase(CustomTestCase):
    def setUp(self):
        super().setUp()
        self.create_qos('normal', 'high')
        self.create_account('acme', 'user01')
        self.executor.set('scontrol show partition', PARTITIONS)

    def test_get_cluster_config(self):
        response = self.rpc('config', 'GetClusterConfig')
        self.assertEqual(response.status_code, 200)
        self.assertJSONKeys(response, ['scheduler_name', 'partitions'])
        compute, gpu = response.json()['partitions']
        self.assertEqual(compute, {
            'name': 'compute',
            'mem_mb': 512000,
            'cores': 64,
            'gpus': 0,
            'nodes': 2,
            'qos': ['normal', 'high'],
            'comment': 'General purpose CPU nodes',
        })
        self.assertEqual(gpu['mem_mb'], 1000000)
        self.assertEqual(gpu['gpus'], 8)
        self.assertEqual(gpu['qos'], ['normal', 'gpu'])
        self.assertEqual(gpu['comment'], '')

    def test_get_cluster_config_no_partition(self):
        self.executor.set('scontrol show partition', '')
        response = self.rpc('config', 'GetClusterConfig')
        self.assertRpcError(response, 500, 'NO_PARTITION')

    def test_get_available_partitions(self):
        response = self.rpc('config', 'GetAvailablePartitions', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertEqual([p['name'] for p in response.json()['partitions']], ['compute', 'gpu'])

        self.create_account('beta', 'user01')
        response = self.rpc('config', 'GetAvailablePartitions', {'user_id': 'user01', 'account_name': 'beta'})
        self.assertEqual([p['name'] for p in response.json()['partitions']], ['compute'])

    def test_get_available_partitions_without_association(self):
        self.create_account('beta')
        response = self.rpc('config', 'GetAvailablePartitions', {'user_id': 'user01', 'account_name': 'beta'})
        self.assertRpcError(response, 404, 'USER_ACCOUNT_NOT_FOUND')

    def test_get_cluster_nodes_info(self):
        self.executor.set('scontrol show node cn001', NODE_CN001)
        self.executor.set('scontrol show node gn001', NODE_GN001)
        response = self.rpc('config', 'GetClusterNodesInfo', {'node_names': ['cn001', 'gn001']})
        self.assertEqual(response.status_code, 200)
        cn001, gn001 = response.json()['nodes']
        self.assertEqual(cn001, {
            'node_name': 'cn001',
            'partitions': ['compute'],
            'state': 'RUNNING',
            'cpu_core_count': 32,
            'alloc_cpu_core_count': 8,
            'idle_cpu_core_count': 24,
            'total_mem_mb': 256000,
            'alloc_mem_mb': 64000,
            'idle_mem_mb': 192000,
            'gpu_count': 0,
            'alloc_gpu_count': 0,
            'idle_gpu_count': 0,
        })
        self.assertEqual(gn001['state'], 'NOT_AVAILABLE')
        self.assertEqual(gn001['gpu_count'], 4)
        self.assertEqual(gn001['idle_gpu_count'], 4)

    def test_get_cluster_nodes_info_all_nodes(self):
        self.executor.set('sinfo --noheader -N', 'cn001\ncn001\ngn001\n')
        self.executor.set('scontrol show node cn001', NODE_CN001)
        self.executor.set('scontrol show node gn001', NODE_GN001)
        response = self.rpc('config', 'GetClusterNodesInfo')
        self.assertEqual([n['node_name'] for n in response.json()['nodes']], ['cn001', 'gn001'])

    def test_get_cluster_nodes_info_failure(self):
        self.executor.set('scontrol show node cn001', NODE_CN001)
        self.executor.set('scontrol show node gn001', CommandResult('', 'Node gn001 not found\n', 1))
        response = self.rpc('config', 'GetClusterNodesInfo', {'node_names': ['gn001', 'cn001']})
        self.assertRpcError(response, 500, 'COMMAND_EXEC_FAILED')
        self.assertIn('gn001', response.json()['message'])
        # every node was queried
        self.assertEqual(len(self.executor.ran('scontrol show node')), 2)

    def test_get_cluster_info(self):
        self.executor.set('sinfo -p compute', 'compute* 32 32/28/4/64 (null) up 2 1/0/1/2\n')
        self.executor.set('sinfo -p gpu', 'gpu 32 16/48/0/64 gpu:4 up 2 1/1/0/2\n')
        self.executor.set('squeue -p gpu --noheader -t pending --format=%i', '10\n11\n')
        self.executor.set('squeue -p gpu --noheader -t running --format=%i', '12\n13\n')
        self.executor.set('squeue -p gpu --noheader -t running --format=%b|%D', 'gres/gpu:2|1\ngres/gpu:1|1\n')
        response = self.rpc('config', 'GetClusterInfo')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['cluster_name'], 'testcluster')
        compute, gpu = response.json()['partitions']

        self.assertEqual(compute['node_count'], 2)
        self.assertEqual(compute['not_available_node_count'], 1)
        self.assertEqual(compute['cpu_core_count'], 64)
        self.assertEqual(compute['running_cpu_count'], 32)
        self.assertEqual(compute['job_count'], 0)
        self.assertEqual(compute['running_gpu_count'], 0)
        self.assertEqual(compute['usage_rate_percentage'], 50)
        self.assertEqual(compute['partition_status'], 'AVAILABLE')

        self.assertEqual(gpu['gpu_core_count'], 8)
        self.assertEqual(gpu['running_gpu_count'], 3)
        self.assertEqual(gpu['idle_gpu_count'], 5)
        self.assertEqual(gpu['pending_job_count'], 2)
        self.assertEqual(gpu['running_job_count'], 2)
        self.assertEqual(gpu['job_count'], 4)

    def test_get_cluster_info_partition_down(self):
        self.executor.set('sinfo -p', 'compute 32 0/0/64/64 (null) down 2 0/0/2/2\n')
        response = self.rpc('config', 'GetClusterInfo')
        compute = response.json()['partitions'][0]
        self.assertEqual(compute['partition_status'], 'NOT_AVAILABLE')
        self.assertEqual(compute['usage_rate_percentage'], 0)

    def test_get_version(self):
        response = self.rpc('version', 'GetVersion')
        self.assertEqual(response.json(), {'major': 1, 'minor': 6, 'patch': 0})


class ConfigurationTestCase(SimpleTestCase):
    def write_descriptions(self, content):
        fd, path = tempfile.mkstemp(suffix='.yaml')
        with os.fdopen(fd, 'w') as f:
            f.write(content)
        self.addCleanup(os.remove, path)
        return path

    def test_load_partition_descriptions(self):
        path = self.write_descriptions(
            'partitions:\n'
            '  - name: compute\n'
            '    desc: CPU nodes\n'
            '  - name: debug\n')
        self.assertEqual(load_partition_descriptions(path), {'compute': 'CPU nodes', 'debug': ''})

    def test_load_empty_file(self):
        path = self.write_descriptions('')
        self.assertEqual(load_partition_descriptions(path), {})

    def test_config_from_settings(self):
        path = self.write_descriptions('partitions:\n  - name: gpu\n    desc: A100 nodes\n')
        with override_settings(
                CLUSTER_NAME='other',
                SLURM_PARTITION_DESCRIPTIONS={'compute': 'CPU nodes'},
                SLURM_PARTITION_DESCRIPTIONS_FILE=path):
            config = ClusterConfig.from_settings()
        self.assertEqual(config.cluster_name, 'other')
        self.assertEqual(config.partition_description('compute'), 'CPU nodes')
        self.assertEqual(config.partition_description('gpu'), 'A100 nodes')
        self.assertEqual(config.partition_description('debug'), '')
