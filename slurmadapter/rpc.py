import functools
import logging
from rest_framework import permissions
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from slurmadapter.context import SlurmContext

logger = logging.getLogger(__name__)


def rpc(name, serializer_class=None):
    """
    Decorator to expose a method of a RpcViewSet as the POST endpoint <name>/,
    the validated request is given to the method.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, request, *args, **kwargs):
            self.rpc_name = name
            data = {}
            if serializer_class is not None:
                serializer = serializer_class(data=request.data)
                serializer.is_valid(raise_exception=True)
                data = serializer.validated_data
            logger.info('Received request {}: {}'.format(name, dict(data)))
            response = func(self, data)
            logger.debug('{} response: {}'.format(name, response))
            return Response(response)
        return action(detail=False, methods=['post'], url_path=name, url_name=name)(wrapper)
    return decorator


class RpcViewSet(viewsets.ViewSet):
    permission_classes = [permissions.IsAdminUser]
    rpc_name = None

    def get_context(self):
        return SlurmContext.from_settings()
