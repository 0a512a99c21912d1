import os
import pwd
import re
from slurmadapter.exceptions import InvalidArgument, NotFound

# account and user names accepted by the RPC methods
RE_IDENTIFIER = re.compile(r'^[A-Za-z0-9_.\-]+$')


def check_identifiers(*names, reason='ACCOUNT_USER_CONTAIN_ILLEGAL_CHARACTERS'):
    """Raise InvalidArgument if one of the names contains illegal characters"""
    for name in names:
        if name is None:
            continue
        if not RE_IDENTIFIER.match(name):
            raise InvalidArgument(
                'The account or username contains illegal characters: {}'.format(name),
                reason=reason)


def username_to_uid(username):
    """return the uid of a username"""
    return int(pwd.getpwnam(username).pw_uid)


def uid_to_username(uid):
    """return the username of a uid"""
    return pwd.getpwuid(uid).pw_name


def username_to_home(username):
    """return the home directory of a username"""
    return pwd.getpwnam(username).pw_dir


class PosixIdentity:
    """
    Resolve users with the name service of the host, the users of the cluster
    are usually coming from LDAP through sssd.
    """

    def uid(self, username):
        try:
            return username_to_uid(username)
        except KeyError:
            return None

    def username(self, uid):
        try:
            return uid_to_username(uid)
        except KeyError:
            # the user was deleted, keep the numeric id
            return str(uid)

    def home(self, username):
        try:
            return username_to_home(username)
        except KeyError:
            raise NotFound('{} does not have a home directory.'.format(username), reason='USER_NOT_FOUND')


# Override the function here with the one in local.py if file exist
if os.path.isfile(os.path.join(os.path.dirname(__file__), 'local.py')):
    from .local import *  # noqa
