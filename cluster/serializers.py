from rest_framework import serializers


class AvailablePartitionsSerializer(serializers.Serializer):
    user_id = serializers.CharField()
    account_name = serializers.CharField()


class NodeNamesSerializer(serializers.Serializer):
    node_names = serializers.ListField(child=serializers.CharField(), required=False, default=list)


class PartitionSerializer(serializers.Serializer):
    name = serializers.CharField()
    mem_mb = serializers.IntegerField()
    cores = serializers.IntegerField()
    gpus = serializers.IntegerField()
    nodes = serializers.IntegerField()
    qos = serializers.ListField(child=serializers.CharField())
    comment = serializers.CharField(allow_blank=True)


class NodeInfoSerializer(serializers.Serializer):
    node_name = serializers.CharField()
    partitions = serializers.ListField(child=serializers.CharField())
    state = serializers.CharField()
    cpu_core_count = serializers.IntegerField()
    alloc_cpu_core_count = serializers.IntegerField()
    idle_cpu_core_count = serializers.IntegerField()
    total_mem_mb = serializers.IntegerField()
    alloc_mem_mb = serializers.IntegerField()
    idle_mem_mb = serializers.IntegerField()
    gpu_count = serializers.IntegerField()
    alloc_gpu_count = serializers.IntegerField()
    idle_gpu_count = serializers.IntegerField()
