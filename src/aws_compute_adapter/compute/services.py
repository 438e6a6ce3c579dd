#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from ..aio.dispatch import QueryDispatcher
from ..aio.polling import ConvergencePoller
from ..aio.transport import AIOHTTPTransport
from ..config import AdapterConfig
from ..interfaces.http import HTTPTransport
from ..retries import transport_retry_strategy
from ..signers import SigV2QuerySigner, SigV4QuerySigner
from ..tracing import APITracer
from .autoscaling import AutoScalingSupport
from .images import ImageSupport
from .instances import InstanceSupport
from .snapshots import SnapshotSupport
from .tags import TagSupport
from .volumes import VolumeSupport

EC2_ENDPOINT = "https://ec2.{region}.amazonaws.com"
AUTOSCALING_ENDPOINT = "https://autoscaling.{region}.amazonaws.com"
AUTOSCALING_SERVICE = "autoscaling"


class ComputeServices:
    """Every compute resource support, wired to one account and region.

    EC2 calls are signed with the per-parameter query signature and auto scaling
    calls with SigV4. Both share one transport, tracer, and convergence poller.

    .. code-block:: python

        config = AdapterConfig(region="us-east-1")
        await config.resolve()
        services = ComputeServices(config)
        async for image in services.images.list_images():
            ...
    """

    def __init__(
        self,
        config: AdapterConfig,
        *,
        transport: HTTPTransport | None = None,
        tracer: APITracer | None = None,
        poller: ConvergencePoller | None = None,
    ):
        """
        :param config: A resolved configuration.
        :param transport: HTTP transport shared by every dispatcher. Defaults to an
            :py:class:`AIOHTTPTransport` using the configured timeout.
        :param tracer: Receives one event per dispatched call.
        :param poller: Poller used by operations that wait for convergence.
        :raises MissingCredentialsError: If the configuration has no credentials.
        :raises ValueError: If neither a region nor an endpoint is configured.
        """
        region = config.region
        if region is None and config.endpoint_uri is None:
            raise ValueError("A region or an endpoint_uri must be configured.")

        self.config = config
        self.region = region
        self.tracer = tracer or APITracer()
        self.poller = poller or ConvergencePoller()
        transport = transport or AIOHTTPTransport(timeout=config.http_timeout)
        identity = config.credential_identity()
        retry_strategy = transport_retry_strategy(
            max_attempts=config.transport_max_attempts,
            delay=config.transport_retry_delay,
        )

        self.ec2 = QueryDispatcher(
            endpoint=config.endpoint_uri or EC2_ENDPOINT.format(region=region),
            signer=SigV2QuerySigner(),
            identity=identity,
            api_version=config.ec2_api_version,
            transport=transport,
            retry_strategy=retry_strategy,
            tracer=self.tracer,
        )
        self.autoscaling_dispatcher = QueryDispatcher(
            endpoint=config.endpoint_uri or AUTOSCALING_ENDPOINT.format(region=region),
            signer=SigV4QuerySigner(
                region=region or "us-east-1", service=AUTOSCALING_SERVICE
            ),
            identity=identity,
            api_version=config.autoscaling_api_version,
            transport=transport,
            retry_strategy=retry_strategy,
            tracer=self.tracer,
        )

        self.tags = TagSupport(self.ec2, region=region, poller=self.poller)
        self.images = ImageSupport(
            self.ec2, region=region, poller=self.poller, tags=self.tags
        )
        self.volumes = VolumeSupport(self.ec2, region=region, poller=self.poller)
        self.snapshots = SnapshotSupport(
            self.ec2, region=region, poller=self.poller, tags=self.tags
        )
        self.instances = InstanceSupport(
            self.ec2, region=region, poller=self.poller, tags=self.tags
        )
        self.autoscaling = AutoScalingSupport(
            self.autoscaling_dispatcher, region=region, poller=self.poller
        )
