import logging
import os
from slurmadapter.common import check_identifiers
from slurmadapter.exceptions import NotFound, Unknown

logger = logging.getLogger(__name__)

SHEBANG = '#!/bin/bash'


def parse_job_id(output):
    """sbatch prints "Submitted batch job <id>", the id is the last token"""
    tokens = output.split()
    if not tokens:
        return None
    try:
        return int(tokens[-1])
    except ValueError:
        return None


def has_chdir(script):
    return '--chdir' in script or ' -D ' in script


def insert_chdir(script, directory):
    """Add a --chdir directive after the shebang of the script"""
    lines = script.lstrip('\n').split('\n')
    if lines and lines[0].startswith('#!'):
        header, body = lines[0], lines[1:]
    else:
        header, body = SHEBANG, lines
    return '\n'.join([header, '#SBATCH --chdir={}'.format(directory)] + body)


class JobService:
    def __init__(self, context):
        self.context = context
        self.store = context.store
        self.scheduler = context.scheduler
        self.control = context.control

    def check_user(self, user):
        check_identifiers(user)
        if not self.store.user_exists(user):
            raise NotFound('The user {} does not exist.'.format(user), reason='USER_NOT_FOUND')

    def working_directory(self, user, working_directory):
        if os.path.isabs(working_directory):
            return working_directory
        return os.path.join(self.context.identity.home(user), working_directory)

    def generate_script(self, user, account, partition, job_name, node_count, core_count, script,
                        working_directory, qos=None, time_limit_minutes=None, gpu_count=0,
                        stdout=None, stderr=None, extra_options=()):
        lines = [
            SHEBANG,
            '#SBATCH -A {}'.format(account),
            '#SBATCH --partition={}'.format(partition),
        ]
        if qos:
            lines.append('#SBATCH --qos={}'.format(qos))
        lines.append('#SBATCH -J {}'.format(job_name))
        lines.append('#SBATCH --nodes={}'.format(node_count))
        lines.append('#SBATCH -c {}'.format(core_count))
        if time_limit_minutes:
            lines.append('#SBATCH --time={}'.format(time_limit_minutes))
        lines.append('#SBATCH --chdir={}'.format(self.working_directory(user, working_directory)))
        if stdout:
            lines.append('#SBATCH --output={}'.format(stdout))
        if stderr:
            lines.append('#SBATCH --error={}'.format(stderr))
        if gpu_count > 0:
            lines.append('#SBATCH --gres=gpu:{}'.format(gpu_count))
        for option in extra_options:
            lines.append('#SBATCH {}'.format(option))
        lines.append('')
        if self.context.config.module_path:
            lines.append('source {}'.format(self.context.config.module_path))
        lines.append(script)
        return '\n'.join(lines) + '\n'

    def sbatch(self, user, script):
        result = self.control.submit(user, script)
        if result.returncode != 0:
            raise Unknown(result.stderr.strip() or result.stdout.strip(), reason='SBATCH_FAILED')
        job_id = parse_job_id(result.stdout)
        if job_id is None:
            raise Unknown('Unexpected output of sbatch: {}'.format(result.stdout.strip()), reason='SBATCH_FAILED')
        logger.info('Job {} submitted by {}'.format(job_id, user))
        return job_id

    def submit_job(self, user, account, partition, **kwargs):
        check_identifiers(account)
        self.check_user(user)
        generated = self.generate_script(user, account, partition, **kwargs)
        return self.sbatch(user, generated), generated

    def submit_script(self, user, script, script_file_full_path=None):
        self.check_user(user)
        if not has_chdir(script):
            if not script_file_full_path:
                raise Unknown(
                    'The script has no --chdir and the path of the script file is not set.',
                    reason='SCRIPT_FILE_FULL_PATH_NOT_SETTING')
            script = insert_chdir(script, script_file_full_path)
        return self.sbatch(user, script)

    def cancel_job(self, user, job_id):
        self.check_user(user)
        if not self.scheduler.job_exists(job_id):
            raise NotFound('Job {} does not exist.'.format(job_id), reason='JOB_NOT_FOUND')
        result = self.control.cancel(user, job_id)
        if result.returncode != 0:
            raise Unknown(result.stderr.strip() or result.stdout.strip(), reason='CANCEL_JOB_FAILED')
        logger.info('Job {} cancelled by {}'.format(job_id, user))

    def query_time_limit(self, job_id):
        time_limit = self.store.unfinished_timelimit(job_id)
        if time_limit is None:
            raise NotFound('Job {} does not exist or is finished.'.format(job_id), reason='JOB_NOT_FOUND')
        return time_limit

    def change_time_limit(self, job_id, delta_minutes):
        self.query_time_limit(job_id)
        self.control.change_time_limit(job_id, delta_minutes)
        logger.info('Time limit of job {} changed by {} minutes'.format(job_id, delta_minutes))
