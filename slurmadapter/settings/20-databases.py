# Database
# https://docs.djangoproject.com/en/4.2/ref/settings/#databases

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.mysql',
        'NAME': 'slurmadapter',
        'USER': 'slurmadapter',
        'PASSWORD': 'changeme',
        'HOST': 'dbserver',
        'PORT': '3306',
        'OPTIONS': {
        }
    },
    'slurm': {
        'ENGINE': 'django.db.backends.mysql',
        'NAME': 'slurm_acct_db',
        'USER': 'slurm-adapter',
        'PASSWORD': 'changeme',
        'HOST': 'dbserver',
        'PORT': '3306',
        'OPTIONS': {
            'charset': 'utf8mb4',
        },
    },
}

# Character set of the slurmdbd tables. When it is not a utf8 variant, text
# columns are reinterpreted as utf8mb4 in the queries.
SLURM_DB_ENCODING = 'utf8mb4'

# The accounting tables belong to slurmdbd, they are only created for the tests
SLURM_CREATE_TABLES = False

WATCHMAN_DATABASES = ['default', 'slurm']
WATCHMAN_CHECKS = (
    'watchman.checks.databases',
)

DATABASE_ROUTERS = ['database_routers.dbrouters.DbRouter']
