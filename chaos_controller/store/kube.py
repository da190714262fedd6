"""
Cluster API backed object store

Chaos kinds, schedules, workflows and workflow nodes are custom objects
served through CustomObjectsApi; pods and nodes come from CoreV1Api.
"""
import logging
import threading
from typing import Any, Dict, List, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from ..errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from ..manifests import object_from_dict, object_to_dict
from ..models import (
    API_GROUP, API_VERSION, KIND_NODE, KIND_POD, KIND_SCHEDULE, KIND_WORKFLOW, KIND_WORKFLOW_NODE,
    Container, NamespacedName, Node, ObjectMeta, Pod
)
from .base import ADDED, DELETED, MODIFIED, BaseObjectStore

logger = logging.getLogger(__name__)

_BUILTIN_PLURALS = {
    KIND_SCHEDULE: "schedules",
    KIND_WORKFLOW: "workflows",
    KIND_WORKFLOW_NODE: "workflownodes",
}


def label_selector_string(labels: Optional[Dict[str, str]]) -> Optional[str]:
    if not labels:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def meta_from_k8s(metadata) -> ObjectMeta:
    return ObjectMeta(
        name=metadata.name,
        namespace=metadata.namespace or "",
        labels=dict(metadata.labels or {}),
        annotations=dict(metadata.annotations or {}),
        resource_version=metadata.resource_version,
        uid=metadata.uid,
        creation_timestamp=metadata.creation_timestamp,
        deletion_timestamp=metadata.deletion_timestamp,
        finalizers=list(metadata.finalizers or []),
    )


def pod_from_k8s(pod) -> Pod:
    """Convert a V1Pod into the selector's Pod view"""
    containers = []
    for container in pod.spec.containers or []:
        ports = [port.container_port for port in container.ports or []]
        containers.append(Container(name=container.name, ports=ports))

    return Pod(
        meta=meta_from_k8s(pod.metadata),
        node_name=pod.spec.node_name or "",
        phase=pod.status.phase if pod.status else "",
        pod_ip=(pod.status.pod_ip or "") if pod.status else "",
        containers=containers,
    )


def node_from_k8s(node) -> Node:
    return Node(meta=meta_from_k8s(node.metadata))


class KubeObjectStore(BaseObjectStore):
    """Object store talking to a live cluster"""

    def __init__(self, registry, custom_api=None, core_api=None, kube_context: Optional[str] = None,
                 in_cluster: bool = False):
        super().__init__()
        self.registry = registry

        if custom_api is None or core_api is None:
            if in_cluster:
                config.load_incluster_config()
            else:
                config.load_kube_config(context=kube_context)

        self.custom_api = custom_api or client.CustomObjectsApi()
        self.core_api = core_api or client.CoreV1Api()
        self._watchers: List[watch.Watch] = []
        self._watch_threads: List[threading.Thread] = []
        self._stopped = threading.Event()

    def plural(self, kind: str) -> str:
        if kind in _BUILTIN_PLURALS:
            return _BUILTIN_PLURALS[kind]
        return self.registry.get(kind).plural

    def _translate(self, e: ApiException, kind: str, key, on_conflict: str = "conflict") -> Exception:
        if e.status == 404:
            return NotFoundError(kind, str(key))
        if e.status == 409:
            if on_conflict == "exists":
                return AlreadyExistsError(kind, str(key))
            return ConflictError(kind, str(key))
        return StoreError(f"{kind} {key}: cluster API error {e.status}: {e.reason}")

    def get(self, kind: str, key: NamespacedName) -> Any:
        try:
            if kind == KIND_POD:
                return pod_from_k8s(self.core_api.read_namespaced_pod(key.name, key.namespace))
            if kind == KIND_NODE:
                return node_from_k8s(self.core_api.read_node(key.name))

            data = self.custom_api.get_namespaced_custom_object(
                API_GROUP, API_VERSION, key.namespace, self.plural(kind), key.name
            )
        except ApiException as e:
            raise self._translate(e, kind, key)
        return object_from_dict(data, self.registry)

    def list(self, kind: str, namespace: Optional[str] = None,
             labels: Optional[Dict[str, str]] = None) -> List[Any]:
        selector = label_selector_string(labels)
        kwargs = {'label_selector': selector} if selector else {}
        try:
            if kind == KIND_POD:
                if namespace is None:
                    pods = self.core_api.list_pod_for_all_namespaces(**kwargs)
                else:
                    pods = self.core_api.list_namespaced_pod(namespace, **kwargs)
                return [pod_from_k8s(pod) for pod in pods.items]
            if kind == KIND_NODE:
                return [node_from_k8s(node) for node in self.core_api.list_node(**kwargs).items]

            if namespace is None:
                data = self.custom_api.list_cluster_custom_object(API_GROUP, API_VERSION, self.plural(kind), **kwargs)
            else:
                data = self.custom_api.list_namespaced_custom_object(
                    API_GROUP, API_VERSION, namespace, self.plural(kind), **kwargs
                )
        except ApiException as e:
            raise self._translate(e, kind, namespace or "*")

        items = []
        for item in data.get('items', []):
            item.setdefault('kind', kind)
            items.append(object_from_dict(item, self.registry))
        return items

    def _custom_only(self, kind: str, verb: str):
        if kind in (KIND_POD, KIND_NODE):
            raise StoreError(f"{verb} is not supported for {kind}")

    def create(self, obj: Any) -> Any:
        self._custom_only(obj.kind, "create")
        body = object_to_dict(obj, self.registry)
        body.pop('status', None)
        body['metadata'].pop('resourceVersion', None)
        try:
            data = self.custom_api.create_namespaced_custom_object(
                API_GROUP, API_VERSION, obj.meta.namespace, self.plural(obj.kind), body
            )
        except ApiException as e:
            raise self._translate(e, obj.kind, obj.meta.key(), on_conflict="exists")
        return object_from_dict(data, self.registry)

    def update(self, obj: Any) -> Any:
        self._custom_only(obj.kind, "update")
        body = object_to_dict(obj, self.registry)
        try:
            data = self.custom_api.replace_namespaced_custom_object(
                API_GROUP, API_VERSION, obj.meta.namespace, self.plural(obj.kind), obj.meta.name, body
            )
        except ApiException as e:
            raise self._translate(e, obj.kind, obj.meta.key())
        return object_from_dict(data, self.registry)

    def update_status(self, obj: Any) -> Any:
        self._custom_only(obj.kind, "update_status")
        body = object_to_dict(obj, self.registry)
        try:
            data = self.custom_api.replace_namespaced_custom_object_status(
                API_GROUP, API_VERSION, obj.meta.namespace, self.plural(obj.kind), obj.meta.name, body
            )
        except ApiException as e:
            raise self._translate(e, obj.kind, obj.meta.key())
        return object_from_dict(data, self.registry)

    def delete(self, kind: str, key: NamespacedName) -> None:
        try:
            if kind == KIND_POD:
                self.core_api.delete_namespaced_pod(key.name, key.namespace)
            elif kind == KIND_NODE:
                raise StoreError("delete is not supported for Node")
            else:
                self.custom_api.delete_namespaced_custom_object(
                    API_GROUP, API_VERSION, key.namespace, self.plural(kind), key.name
                )
        except ApiException as e:
            raise self._translate(e, kind, key)

    # -----------------------------------------------------------------------
    # Watches
    # -----------------------------------------------------------------------

    def start_watches(self, kinds: List[str]) -> None:
        """Start one watch thread per kind, feeding subscribers"""
        for kind in kinds:
            thread = threading.Thread(target=self._watch_kind, args=(kind,), name=f"watch-{kind}", daemon=True)
            self._watch_threads.append(thread)
            thread.start()

    def stop_watches(self) -> None:
        self._stopped.set()
        for watcher in self._watchers:
            watcher.stop()
        for thread in self._watch_threads:
            thread.join(timeout=5)
        self._watch_threads.clear()

    def _watch_kind(self, kind: str) -> None:
        event_types = {'ADDED': ADDED, 'MODIFIED': MODIFIED, 'DELETED': DELETED}
        while not self._stopped.is_set():
            watcher = watch.Watch()
            self._watchers.append(watcher)
            try:
                if kind == KIND_POD:
                    stream = watcher.stream(self.core_api.list_pod_for_all_namespaces, timeout_seconds=300)
                elif kind == KIND_NODE:
                    stream = watcher.stream(self.core_api.list_node, timeout_seconds=300)
                else:
                    stream = watcher.stream(
                        self.custom_api.list_cluster_custom_object,
                        API_GROUP, API_VERSION, self.plural(kind),
                        timeout_seconds=300,
                    )

                for event in stream:
                    event_type = event_types.get(event['type'])
                    if event_type is None:
                        continue
                    raw = event['object']
                    if kind == KIND_POD:
                        obj = pod_from_k8s(raw)
                    elif kind == KIND_NODE:
                        obj = node_from_k8s(raw)
                    else:
                        raw.setdefault('kind', kind)
                        obj = object_from_dict(raw, self.registry)
                    self._notify(event_type, obj)
            except ApiException as e:
                logger.warning(f"Watch on {kind} failed: {e.status} {e.reason}, restarting")
                self._stopped.wait(1.0)
            except Exception as e:
                logger.error(f"Watch on {kind} failed: {e}, restarting")
                self._stopped.wait(1.0)
            finally:
                self._watchers.remove(watcher)
