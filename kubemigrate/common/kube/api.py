"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

KubeClient implementation on top of the official kubernetes client

"""
from .base import CLUSTER_SCOPED_KINDS, Kind, KubeClient, label_selector, Manifest, object_name
from collections.abc import Callable, Iterator, Mapping
from kubemigrate.common import magic
from kubemigrate.common.exceptions import AlreadyExistsException, ConflictException, NotFoundException
from kubernetes import client, config as kube_config
from kubernetes.client.exceptions import ApiException
from typing import Any

import contextlib
import logging

logger = logging.getLogger(__name__)

# Suffix of the generated CoreV1Api / CoordinationV1Api method names
_METHOD_SUFFIXES = {
    Kind.config_map: "config_map",
    Kind.service: "service",
    Kind.endpoints: "endpoints",
    Kind.persistent_volume: "persistent_volume",
    Kind.persistent_volume_claim: "persistent_volume_claim",
    Kind.pod: "pod",
    Kind.node: "node",
    Kind.lease: "lease",
}


@contextlib.contextmanager
def _translated_api_errors(kind: Kind, name: str, *, on_conflict: type[Exception]) -> Iterator[None]:
    try:
        yield
    except ApiException as ex:
        if ex.status == 404:
            raise NotFoundException(f"{kind} {name} not found") from ex
        if ex.status == 409:
            raise on_conflict(f"{kind} {name}: {ex.reason}") from ex
        raise


class ApiKubeClient(KubeClient):
    def __init__(self, api_client: client.ApiClient, namespace: str) -> None:
        self.api_client = api_client
        self.namespace = namespace
        self.core = client.CoreV1Api(api_client)
        self.coordination = client.CoordinationV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)

    @classmethod
    def from_config(cls, *, namespace: str, kubeconfig: str | None = None, context: str | None = None) -> "ApiKubeClient":
        try:
            kube_config.load_kube_config(config_file=kubeconfig, context=context)
        except kube_config.ConfigException:
            if kubeconfig:
                raise
            logger.debug("No kubeconfig available, trying in-cluster configuration")
            kube_config.load_incluster_config()
        return cls(client.ApiClient(), namespace)

    def _method(self, kind: Kind, verb: str) -> Callable[..., Any]:
        api = self.coordination if kind is Kind.lease else self.core
        scope = "" if kind in CLUSTER_SCOPED_KINDS else "namespaced_"
        return getattr(api, f"{verb}_{scope}{_METHOD_SUFFIXES[kind]}")

    def _namespace_kw(self, kind: Kind) -> dict[str, str]:
        return {} if kind in CLUSTER_SCOPED_KINDS else {"namespace": self.namespace}

    def _to_manifest(self, obj: Any) -> Manifest:
        return self.api_client.sanitize_for_serialization(obj)

    def get(self, kind: Kind, name: str) -> Manifest:
        with _translated_api_errors(kind, name, on_conflict=ConflictException):
            if kind is Kind.cassandra_datacenter:
                return self.custom.get_namespaced_custom_object(
                    magic.CASSDC_GROUP, magic.CASSDC_VERSION, self.namespace, magic.CASSDC_PLURAL, name
                )
            return self._to_manifest(self._method(kind, "read")(name, **self._namespace_kw(kind)))

    def create(self, kind: Kind, body: Manifest) -> Manifest:
        with _translated_api_errors(kind, object_name(body), on_conflict=AlreadyExistsException):
            if kind is Kind.cassandra_datacenter:
                return self.custom.create_namespaced_custom_object(
                    magic.CASSDC_GROUP, magic.CASSDC_VERSION, self.namespace, magic.CASSDC_PLURAL, body
                )
            return self._to_manifest(self._method(kind, "create")(body=body, **self._namespace_kw(kind)))

    def update(self, kind: Kind, body: Manifest) -> Manifest:
        name = object_name(body)
        with _translated_api_errors(kind, name, on_conflict=ConflictException):
            if kind is Kind.cassandra_datacenter:
                return self.custom.replace_namespaced_custom_object(
                    magic.CASSDC_GROUP, magic.CASSDC_VERSION, self.namespace, magic.CASSDC_PLURAL, name, body
                )
            return self._to_manifest(self._method(kind, "replace")(name, body=body, **self._namespace_kw(kind)))

    def list(self, kind: Kind, *, labels: Mapping[str, str] | None = None) -> list[Manifest]:
        selector = label_selector(labels) if labels else None
        if kind is Kind.cassandra_datacenter:
            result = self.custom.list_namespaced_custom_object(
                magic.CASSDC_GROUP, magic.CASSDC_VERSION, self.namespace, magic.CASSDC_PLURAL, label_selector=selector
            )
            return result["items"]
        result = self._method(kind, "list")(label_selector=selector, **self._namespace_kw(kind))
        return [self._to_manifest(item) for item in result.items]
