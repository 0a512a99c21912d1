# Models of the slurmdbd tables used by the adapter, generated with inspectdb
# and reduced to the columns that are read.
#   * The tables belong to slurmdbd, Django only creates them for the tests
#   * Tables of a cluster are prefixed with its name, the others are shared
# Don't rename db_table values or field names.
from django.db import models
from django.conf import settings


class AcctTable(models.Model):
    creation_time = models.PositiveBigIntegerField(default=0)
    mod_time = models.PositiveBigIntegerField(default=0)
    deleted = models.IntegerField(blank=True, null=True, default=0)
    name = models.TextField(primary_key=True)
    description = models.TextField(default='')
    organization = models.TextField(default='')

    class Meta:
        managed = settings.SLURM_CREATE_TABLES
        db_table = 'acct_table'

    def __str__(self):
        return self.name


class AssocTable(models.Model):
    creation_time = models.PositiveBigIntegerField(default=0)
    mod_time = models.PositiveBigIntegerField(default=0)
    deleted = models.IntegerField(default=0)
    is_def = models.IntegerField(default=0)
    id_assoc = models.AutoField(primary_key=True)
    user = models.TextField(default='')
    acct = models.TextField()
    partition = models.TextField(default='')
    parent_acct = models.TextField(default='')
    max_jobs = models.IntegerField(blank=True, null=True)
    max_submit_jobs = models.IntegerField(blank=True, null=True)
    grp_jobs = models.IntegerField(blank=True, null=True)
    grp_submit_jobs = models.IntegerField(blank=True, null=True)
    def_qos_id = models.IntegerField(blank=True, null=True)
    qos = models.TextField(default='')

    class Meta:
        managed = settings.SLURM_CREATE_TABLES
        db_table = settings.CLUSTER_NAME + '_assoc_table'
        unique_together = (('user', 'acct', 'partition'),)

    def is_blocked(self):
        # MaxSubmitJobs=0 is how an user is blocked in an account
        return self.max_submit_jobs == 0


class JobTable(models.Model):
    class StatesJob(models.IntegerChoices):
        PENDING = 0
        RUNNING = 1
        SUSPENDED = 2
        COMPLETED = 3
        CANCELLED = 4
        FAILED = 5
        TIMEOUT = 6
        NODE_FAIL = 7

    job_db_inx = models.BigAutoField(primary_key=True)
    mod_time = models.PositiveBigIntegerField(default=0)
    deleted = models.IntegerField(default=0)
    account = models.TextField(blank=True, null=True)
    cpus_req = models.PositiveIntegerField(default=0)
    job_name = models.TextField(default='')
    id_assoc = models.ForeignKey(AssocTable, on_delete=models.PROTECT, db_column='id_assoc')
    id_job = models.PositiveIntegerField()
    id_qos = models.PositiveIntegerField(default=0)
    id_user = models.PositiveIntegerField()
    id_group = models.PositiveIntegerField(default=0)
    mem_req = models.PositiveBigIntegerField(default=0)
    nodelist = models.TextField(blank=True, null=True)
    nodes_alloc = models.PositiveIntegerField(default=0)
    partition = models.TextField(default='')
    priority = models.PositiveIntegerField(default=0)
    state = models.PositiveIntegerField()
    timelimit = models.PositiveIntegerField(default=0)
    time_submit = models.PositiveBigIntegerField(default=0)
    time_eligible = models.PositiveBigIntegerField(default=0)
    time_start = models.PositiveBigIntegerField(default=0)
    time_end = models.PositiveBigIntegerField(default=0)
    time_suspended = models.PositiveBigIntegerField(default=0)
    gres_used = models.TextField(default='')
    work_dir = models.TextField(default='')
    tres_alloc = models.TextField(default='')
    tres_req = models.TextField(default='')

    class Meta:
        managed = settings.SLURM_CREATE_TABLES
        db_table = settings.CLUSTER_NAME + '_job_table'
        unique_together = (('id_job', 'time_submit'),)

    def __str__(self):
        return '{} ({})'.format(self.id_job, self.job_name)


class QosTable(models.Model):
    id = models.AutoField(primary_key=True, null=False)
    creation_time = models.PositiveBigIntegerField(default=0)
    mod_time = models.PositiveBigIntegerField(default=0)
    deleted = models.IntegerField(blank=True, null=True, default=0)
    name = models.TextField(unique=True)
    description = models.TextField(blank=True, null=True)
    priority = models.PositiveIntegerField(blank=True, null=True)

    class Meta:
        managed = settings.SLURM_CREATE_TABLES
        db_table = 'qos_table'

    def __str__(self):
        return self.name


class TresTable(models.Model):
    id = models.AutoField(primary_key=True, null=False)
    creation_time = models.PositiveBigIntegerField(default=0)
    deleted = models.IntegerField(default=0)
    type = models.TextField()
    name = models.TextField(default='')

    class Meta:
        managed = settings.SLURM_CREATE_TABLES
        db_table = 'tres_table'
        unique_together = (('type', 'name'),)


class UserTable(models.Model):
    creation_time = models.PositiveBigIntegerField(default=0)
    mod_time = models.PositiveBigIntegerField(default=0)
    deleted = models.IntegerField(blank=True, null=True, default=0)
    name = models.TextField(primary_key=True)
    admin_level = models.SmallIntegerField(default=1)

    class Meta:
        managed = settings.SLURM_CREATE_TABLES
        db_table = 'user_table'

    def __str__(self):
        return self.name
