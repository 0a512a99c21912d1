from rest_framework import serializers
import datetime
from jobs.engine import JOB_FIELDS
from slurm.states import StatesJob


class UnixEpochDateField(serializers.DateTimeField):
    def to_internal_value(self, value):
        """ Return epoch time for a datetime string or ``None``"""
        value = super().to_internal_value(value)
        try:
            return int(value.timestamp())
        except (AttributeError, TypeError):
            return None

    def to_representation(self, value):
        if not value:
            return None
        return super().to_representation(datetime.datetime.fromtimestamp(int(value), tz=datetime.timezone.utc))


class TimeRangeSerializer(serializers.Serializer):
    start_time = UnixEpochDateField(required=False)
    end_time = UnixEpochDateField(required=False)


class JobFilterSerializer(serializers.Serializer):
    users = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    accounts = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    states = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    job_id = serializers.IntegerField(min_value=0, required=False)
    job_name = serializers.CharField(required=False)
    submit_time = TimeRangeSerializer(required=False)
    end_time = TimeRangeSerializer(required=False)

    def validate_states(self, value):
        labels = [label.upper() for label in value]
        known = set(StatesJob.names) | {'SUSPEND', 'CANCELED', 'COMPLETE'}
        for label in labels:
            if label not in known:
                raise serializers.ValidationError('Unknown state {}'.format(label))
        return labels


class PageInfoSerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1)
    page_size = serializers.IntegerField(min_value=1)


class SortSerializer(serializers.Serializer):
    field = serializers.CharField(required=False, allow_blank=True)
    order = serializers.ChoiceField(choices=['ASC', 'DESC'], default='ASC')


class FieldsMixin(serializers.Serializer):
    fields = serializers.ListField(child=serializers.ChoiceField(choices=JOB_FIELDS), required=False, default=list)


class GetJobByIdSerializer(FieldsMixin):
    job_id = serializers.IntegerField(min_value=0)


class GetJobsSerializer(FieldsMixin):
    filter = JobFilterSerializer(required=False)
    sort = SortSerializer(required=False)
    page_info = PageInfoSerializer(required=False)


class SubmitJobSerializer(serializers.Serializer):
    user_id = serializers.CharField()
    account = serializers.CharField()
    partition = serializers.CharField()
    qos = serializers.CharField(required=False, allow_blank=True)
    job_name = serializers.CharField()
    node_count = serializers.IntegerField(min_value=1)
    core_count = serializers.IntegerField(min_value=1)
    gpu_count = serializers.IntegerField(min_value=0, default=0)
    time_limit_minutes = serializers.IntegerField(min_value=0, required=False)
    script = serializers.CharField(trim_whitespace=False, allow_blank=True)
    working_directory = serializers.CharField()
    stdout = serializers.CharField(required=False, allow_blank=True)
    stderr = serializers.CharField(required=False, allow_blank=True)
    extra_options = serializers.ListField(child=serializers.CharField(), required=False, default=list)


class SubmitScriptAsJobSerializer(serializers.Serializer):
    user_id = serializers.CharField()
    script = serializers.CharField(trim_whitespace=False)
    script_file_full_path = serializers.CharField(required=False, allow_blank=True)


class CancelJobSerializer(serializers.Serializer):
    user_id = serializers.CharField()
    job_id = serializers.IntegerField(min_value=0)


class QueryJobTimeLimitSerializer(serializers.Serializer):
    job_id = serializers.IntegerField(min_value=0)


class ChangeJobTimeLimitSerializer(serializers.Serializer):
    job_id = serializers.IntegerField(min_value=0)
    delta_minutes = serializers.IntegerField()


class JobInfoSerializer(serializers.Serializer):
    job_id = serializers.IntegerField()
    name = serializers.CharField()
    account = serializers.CharField()
    user = serializers.CharField()
    partition = serializers.CharField()
    qos = serializers.CharField()
    state = serializers.CharField()
    cpus_req = serializers.IntegerField()
    mem_req_mb = serializers.IntegerField()
    nodes_req = serializers.IntegerField()
    time_limit_minutes = serializers.IntegerField()
    submit_time = UnixEpochDateField()
    working_directory = serializers.CharField()
    stdout_path = serializers.CharField()
    stderr_path = serializers.CharField()
    start_time = UnixEpochDateField()
    elapsed_seconds = serializers.IntegerField()
    reason = serializers.CharField()
    node_list = serializers.CharField()
    gpus_alloc = serializers.IntegerField()
    cpus_alloc = serializers.IntegerField()
    mem_alloc_mb = serializers.IntegerField()
    nodes_alloc = serializers.IntegerField()
    end_time = UnixEpochDateField()
