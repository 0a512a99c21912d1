from slurmadapter.rpc import RpcViewSet, rpc
from accounts.services import AccountService, UserService
from accounts.serializers import AccountSerializer, ClusterAccountInfoSerializer, CreateAccountSerializer
from accounts.serializers import UserInAccountSerializer, UserSerializer


class AccountViewSet(RpcViewSet):
    """
    API endpoint of the accounts
    """

    @rpc('ListAccounts', UserSerializer)
    def list_accounts(self, data):
        return {'accounts': AccountService(self.get_context()).list_accounts(data['user_id'])}

    @rpc('CreateAccount', CreateAccountSerializer)
    def create_account(self, data):
        AccountService(self.get_context()).create_account(data['account_name'], data['owner_user_id'])
        return {}

    @rpc('BlockAccount', AccountSerializer)
    def block_account(self, data):
        AccountService(self.get_context()).block_account(data['account_name'])
        return {}

    @rpc('UnblockAccount', AccountSerializer)
    def unblock_account(self, data):
        AccountService(self.get_context()).unblock_account(data['account_name'])
        return {}

    @rpc('QueryAccountBlockStatus', AccountSerializer)
    def query_account_block_status(self, data):
        return {'blocked': AccountService(self.get_context()).is_blocked(data['account_name'])}

    @rpc('GetAllAccountsWithUsers')
    def get_all_accounts_with_users(self, data):
        accounts = AccountService(self.get_context()).accounts_with_users()
        return {'accounts': ClusterAccountInfoSerializer(accounts, many=True).data}

    @rpc('DeleteAccount', AccountSerializer)
    def delete_account(self, data):
        AccountService(self.get_context()).delete_account(data['account_name'])
        return {}


class UserViewSet(RpcViewSet):
    """
    API endpoint of the users and of their associations
    """

    @rpc('AddUser', UserInAccountSerializer)
    def add_user(self, data):
        UserService(self.get_context()).add_user(data['user_id'], data['account_name'])
        return {}

    @rpc('AddUserToAccount', UserInAccountSerializer)
    def add_user_to_account(self, data):
        UserService(self.get_context()).add_user_to_account(data['user_id'], data['account_name'])
        return {}

    @rpc('RemoveUserFromAccount', UserInAccountSerializer)
    def remove_user_from_account(self, data):
        UserService(self.get_context()).remove_user_from_account(data['user_id'], data['account_name'])
        return {}

    @rpc('BlockUserInAccount', UserInAccountSerializer)
    def block_user_in_account(self, data):
        UserService(self.get_context()).block_user(data['user_id'], data['account_name'])
        return {}

    @rpc('UnblockUserInAccount', UserInAccountSerializer)
    def unblock_user_in_account(self, data):
        UserService(self.get_context()).unblock_user(data['user_id'], data['account_name'])
        return {}

    @rpc('QueryUserInAccountBlockStatus', UserInAccountSerializer)
    def query_user_in_account_block_status(self, data):
        return {'blocked': UserService(self.get_context()).is_blocked(data['user_id'], data['account_name'])}

    @rpc('DeleteUser', UserSerializer)
    def delete_user(self, data):
        UserService(self.get_context()).delete_user(data['user_id'])
        return {}
