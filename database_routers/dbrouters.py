from django.conf import settings


class DbRouter:
    """
    Implements a database router so that:

    * Django related data - DB alias `default`
    * slurm requests go to the MySQL database of slurmdbd
    """
    def db_for_read(self, model, **hints):
        if model._meta.app_label == 'slurm':
            return 'slurm'
        return None

    def db_for_write(self, model, **hints):
        if model._meta.app_label == 'slurm':
            return 'slurm'
        return None

    def allow_relation(self, obj1, obj2, **hints):
        if obj1._meta.app_label == 'slurm' and obj2._meta.app_label == 'slurm':
            return True
        elif 'slurm' not in [obj1._meta.app_label, obj2._meta.app_label]:
            return True
        # by default return None - "undecided"

    def allow_migrate(self, db, app_label, model_name=None, **hints):
        # the tables of slurmdbd are only created in the test database
        if app_label == 'slurm':
            return db == 'slurm' and settings.SLURM_CREATE_TABLES
        # allow migrations on the "default" (django related data) DB
        return db == 'default'
