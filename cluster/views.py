from slurmadapter.rpc import RpcViewSet, rpc
from cluster.services import ClusterService
from cluster.serializers import AvailablePartitionsSerializer, NodeInfoSerializer, NodeNamesSerializer
from cluster.serializers import PartitionSerializer


class ConfigViewSet(RpcViewSet):
    """
    API endpoint of the partitions, the nodes and their usage
    """

    @rpc('GetClusterConfig')
    def get_cluster_config(self, data):
        config = ClusterService(self.get_context()).cluster_config()
        return {
            'scheduler_name': config['scheduler_name'],
            'partitions': PartitionSerializer(config['partitions'], many=True).data,
        }

    @rpc('GetAvailablePartitions', AvailablePartitionsSerializer)
    def get_available_partitions(self, data):
        partitions = ClusterService(self.get_context()).available_partitions(data['user_id'], data['account_name'])
        return {'partitions': PartitionSerializer(partitions, many=True).data}

    @rpc('GetClusterNodesInfo', NodeNamesSerializer)
    def get_cluster_nodes_info(self, data):
        nodes = ClusterService(self.get_context()).nodes_info(data['node_names'])
        return {'nodes': NodeInfoSerializer(nodes, many=True).data}

    @rpc('GetClusterInfo')
    def get_cluster_info(self, data):
        return ClusterService(self.get_context()).cluster_info()


class VersionViewSet(RpcViewSet):
    @rpc('GetVersion')
    def get_version(self, data):
        return ClusterService(self.get_context()).version()
