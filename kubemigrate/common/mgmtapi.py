"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Client for the management API sidecar running inside the database
container. Only the insecure (plain HTTP, no client certificates) mode
is supported.

"""
from .exceptions import ManagementApiException
from .kube import Manifest
from .magic import LIFECYCLE_START_PATH, MGMT_API_PORT
from .utils import build_netloc, http_request

import logging

logger = logging.getLogger(__name__)


class ManagementApiClient:
    def __init__(self, *, port: int = MGMT_API_PORT, timeout: float = 10.0) -> None:
        self.port = port
        self.timeout = timeout

    def pod_url(self, pod: Manifest, path: str) -> str:
        pod_ip = (pod.get("status") or {}).get("podIP")
        if not pod_ip:
            raise ManagementApiException(f"Pod {pod['metadata']['name']} has no IP address")
        return f"http://{build_netloc(pod_ip, self.port)}{path}"

    def call_lifecycle_start(self, pod: Manifest) -> None:
        url = self.pod_url(pod, LIFECYCLE_START_PATH)
        logger.info("Requesting database start from %s", url)
        r = http_request(url, method="post", caller="ManagementApiClient.call_lifecycle_start", timeout=self.timeout)
        if r is None:
            raise ManagementApiException(f"Management API at {url} refused to start the database")
