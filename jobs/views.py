from slurmadapter.rpc import RpcViewSet, rpc
from slurm.accounting import JobFilter
from jobs.engine import JobQueryEngine, make_sort, project
from jobs.services import JobService
from jobs.serializers import CancelJobSerializer, ChangeJobTimeLimitSerializer, GetJobByIdSerializer
from jobs.serializers import GetJobsSerializer, JobInfoSerializer, QueryJobTimeLimitSerializer
from jobs.serializers import SubmitJobSerializer, SubmitScriptAsJobSerializer


def job_filter_from_request(data):
    submit_time = data.get('submit_time', {})
    end_time = data.get('end_time', {})
    return JobFilter(
        users=data.get('users'),
        accounts=data.get('accounts'),
        states=data.get('states'),
        job_id=data.get('job_id'),
        job_name=data.get('job_name'),
        submit_start=submit_time.get('start_time'),
        submit_end=submit_time.get('end_time'),
        end_start=end_time.get('start_time'),
        end_end=end_time.get('end_time'),
    )


class JobViewSet(RpcViewSet):
    """
    API endpoint of the jobs: queries, submission, cancellation and time limits
    """

    @rpc('GetJobById', GetJobByIdSerializer)
    def get_job_by_id(self, data):
        job = JobQueryEngine(self.get_context()).get_job(data['job_id'])
        return {'job': JobInfoSerializer(project(job, data['fields'])).data}

    @rpc('GetJobs', GetJobsSerializer)
    def get_jobs(self, data):
        page = None
        if 'page_info' in data:
            page = (data['page_info']['page'], data['page_info']['page_size'])
        sort = None
        if 'sort' in data:
            sort = make_sort(data['sort'].get('field'), data['sort']['order'])

        jobs, total = JobQueryEngine(self.get_context()).get_jobs(
            job_filter_from_request(data.get('filter', {})), sort=sort, page=page)
        response = {'jobs': [JobInfoSerializer(project(job, data['fields'])).data for job in jobs]}
        if total is not None:
            response['total_count'] = total
        return response

    @rpc('SubmitJob', SubmitJobSerializer)
    def submit_job(self, data):
        options = dict(data)
        user = options.pop('user_id')
        account = options.pop('account')
        partition = options.pop('partition')
        job_id, script = JobService(self.get_context()).submit_job(user, account, partition, **options)
        return {'job_id': job_id, 'generated_script': script}

    @rpc('SubmitScriptAsJob', SubmitScriptAsJobSerializer)
    def submit_script_as_job(self, data):
        job_id = JobService(self.get_context()).submit_script(
            data['user_id'], data['script'], data.get('script_file_full_path'))
        return {'job_id': job_id}

    @rpc('CancelJob', CancelJobSerializer)
    def cancel_job(self, data):
        JobService(self.get_context()).cancel_job(data['user_id'], data['job_id'])
        return {}

    @rpc('QueryJobTimeLimit', QueryJobTimeLimitSerializer)
    def query_job_time_limit(self, data):
        return {'time_limit_minutes': JobService(self.get_context()).query_time_limit(data['job_id'])}

    @rpc('ChangeJobTimeLimit', ChangeJobTimeLimitSerializer)
    def change_job_time_limit(self, data):
        JobService(self.get_context()).change_time_limit(data['job_id'], data['delta_minutes'])
        return {}
