from rest_framework import serializers


class UserSerializer(serializers.Serializer):
    user_id = serializers.CharField()


class AccountSerializer(serializers.Serializer):
    account_name = serializers.CharField()


class CreateAccountSerializer(AccountSerializer):
    owner_user_id = serializers.CharField()


class UserInAccountSerializer(serializers.Serializer):
    user_id = serializers.CharField()
    account_name = serializers.CharField()


class UserInAccountInfoSerializer(serializers.Serializer):
    user_id = serializers.CharField()
    user_name = serializers.CharField()
    blocked = serializers.BooleanField()


class ClusterAccountInfoSerializer(serializers.Serializer):
    account_name = serializers.CharField()
    blocked = serializers.BooleanField()
    users = UserInAccountInfoSerializer(many=True)
