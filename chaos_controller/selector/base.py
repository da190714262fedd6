"""Target selection over the pods and nodes visible through the object store"""
import logging
import math
import random
import re
from typing import List, Optional, Set

from ..config import ControllerConfig
from ..errors import NotFoundError, SelectorError
from ..interfaces import IObjectStore, ITargetSelector
from ..models import (
    KIND_NODE, KIND_POD, ContainerSelector, LabelSelectorRequirement, NamespacedName, Pod,
    PodSelector, SelectorMode, SelectorOperator, SelectorSpec, Target
)

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)

_FIELD_GETTERS = {
    'metadata.name': lambda pod: pod.meta.name,
    'metadata.namespace': lambda pod: pod.meta.namespace,
    'spec.nodeName': lambda pod: pod.node_name,
    'status.phase': lambda pod: pod.phase,
}


def _matches_requirement(labels: dict, requirement: LabelSelectorRequirement) -> bool:
    present = requirement.key in labels
    if requirement.operator == SelectorOperator.IN:
        return present and labels[requirement.key] in requirement.values
    if requirement.operator == SelectorOperator.NOT_IN:
        return not present or labels[requirement.key] not in requirement.values
    if requirement.operator == SelectorOperator.EXISTS:
        return present
    return not present


def filter_by_mode(pods: List[Pod], mode: SelectorMode, value: str, rng: Optional[random.Random] = None) -> List[Pod]:
    """Narrow the matching pods down to the number the selector mode asks for"""
    rng = rng or random
    if not pods or mode == SelectorMode.ALL:
        return list(pods)

    if mode == SelectorMode.ONE:
        return [rng.choice(pods)]

    try:
        number = int(value)
    except (TypeError, ValueError):
        raise SelectorError(f"mode {mode.value} requires an integer value, got {value!r}")

    if mode == SelectorMode.FIXED:
        if number <= 0:
            raise SelectorError(f"cannot select any pod as value {number} is below or equal to 0")
        count = min(number, len(pods))
    else:
        if not 0 <= number <= 100:
            raise SelectorError(f"mode {mode.value} requires a percentage between 0 and 100, got {number}")
        if mode == SelectorMode.RANDOM_MAX_PERCENT:
            number = rng.randint(0, number)
        count = int(math.floor(len(pods) * number / 100))

    selected = rng.sample(pods, count)
    return sorted(selected, key=lambda pod: (pod.meta.namespace, pod.meta.name))


class TargetSelector(ITargetSelector):
    """Resolves selector specs against live cluster state, no output is persisted"""

    def __init__(self, store: IObjectStore, config: Optional[ControllerConfig] = None,
                 rng: Optional[random.Random] = None):
        self.store = store
        self.config = config or ControllerConfig()
        self.rng = rng or random.Random()

    def select(self, pod_selector: PodSelector) -> List[Target]:
        pods = self.select_pods(pod_selector.selector)
        pods = filter_by_mode(pods, pod_selector.mode, pod_selector.value, self.rng)

        if not isinstance(pod_selector, ContainerSelector):
            return [Target(pod.meta.namespace, pod.meta.name) for pod in pods]

        targets = []
        for pod in pods:
            names = pod_selector.container_names or [c.name for c in pod.containers]
            for name in names:
                if pod.find_container(name) is None:
                    logger.debug(f"Container {name} not found in pod {pod.meta.key()}, skipping")
                    continue
                targets.append(Target(pod.meta.namespace, pod.meta.name, name))
        return targets

    def is_allowed_namespace(self, namespace: str) -> bool:
        if self.config.allowed_namespaces and not re.search(self.config.allowed_namespaces, namespace):
            return False
        if self.config.ignored_namespaces and re.search(self.config.ignored_namespaces, namespace):
            return False
        return True

    def _scoped_namespaces(self, spec: SelectorSpec) -> List[Optional[str]]:
        """Namespaces to list from, None meaning every namespace"""
        if self.config.cluster_scoped:
            return list(spec.namespaces) or [None]

        if len(spec.namespaces) > 1:
            raise SelectorError("cannot use more than one namespace selector when the controller is not cluster scoped")
        if spec.namespaces and spec.namespaces[0] != self.config.target_namespace:
            raise SelectorError(f"cannot list pods from namespace {spec.namespaces[0]} outside of the "
                                f"controller scope {self.config.target_namespace}")
        return [self.config.target_namespace]

    def select_pods(self, spec: SelectorSpec) -> List[Pod]:
        for key in spec.field_selectors:
            if key not in _FIELD_GETTERS:
                raise SelectorError(f"unsupported field selector: {key}")

        if spec.pods:
            pods = self._explicit_pods(spec)
        else:
            pods = []
            for namespace in self._scoped_namespaces(spec):
                pods.extend(self.store.list(KIND_POD, namespace=namespace, labels=spec.label_selectors))

        node_names = self._selected_node_names(spec)
        selected = []
        for pod in pods:
            if pod.meta.deletion_timestamp is not None:
                continue
            if not self.is_allowed_namespace(pod.meta.namespace):
                continue
            if not all(_matches_requirement(pod.meta.labels, req) for req in spec.expression_selectors):
                continue
            if any(_FIELD_GETTERS[key](pod) != value for key, value in spec.field_selectors.items()):
                continue
            if any(pod.meta.annotations.get(key) != value for key, value in spec.annotation_selectors.items()):
                continue
            if node_names is not None and pod.node_name not in node_names:
                continue
            if spec.pod_phase_selectors and pod.phase not in spec.pod_phase_selectors:
                continue
            selected.append(pod)

        return sorted(selected, key=lambda pod: (pod.meta.namespace, pod.meta.name))

    def _explicit_pods(self, spec: SelectorSpec) -> List[Pod]:
        pods = []
        for namespace, names in spec.pods.items():
            if not self.config.cluster_scoped and namespace != self.config.target_namespace:
                logger.warning(f"Namespace {namespace} is outside of the controller scope, skipping")
                continue
            for name in names:
                try:
                    pod = self.store.get(KIND_POD, NamespacedName(namespace, name))
                except NotFoundError:
                    logger.warning(f"Pod {namespace}/{name} not found, skipping")
                    continue
                if all(pod.meta.labels.get(k) == v for k, v in spec.label_selectors.items()):
                    pods.append(pod)
        return pods

    def _selected_node_names(self, spec: SelectorSpec) -> Optional[Set[str]]:
        """Node names pods must run on, None when no node constraint is given"""
        if not spec.nodes and not spec.node_selectors:
            return None

        names = set(spec.nodes)
        if spec.node_selectors:
            for node in self.store.list(KIND_NODE, labels=spec.node_selectors):
                names.add(node.meta.name)
        return names
