"""
Core data models for the Chaos Controller
"""
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from typing import Any, ClassVar, Dict, List, Optional, Tuple
from enum import Enum

from .errors import MalformedSpecError
from .utils.parsing import parse_duration, parse_percent, parse_rate


API_GROUP = "chaos-mesh.org"
API_VERSION = "v1alpha1"

PAUSE_ANNOTATION_KEY = "experiment.chaos-mesh.org/pause"
LABEL_CONTROLLED_BY = "chaos-mesh.org/controlled-by"
LABEL_WORKFLOW = "chaos-mesh.org/workflow"

# Held on experiments until every record is recovered
RECORD_FINALIZER = "chaos-mesh/records"
CLEAN_FINALIZER_ANNOTATION_KEY = "chaos-mesh.chaos-mesh.org/cleanFinalizer"
CLEAN_FINALIZER_FORCED = "forced"

KIND_POD = "Pod"
KIND_NODE = "Node"
KIND_SCHEDULE = "Schedule"
KIND_WORKFLOW = "Workflow"
KIND_WORKFLOW_NODE = "WorkflowNode"


@dataclass(frozen=True)
class NamespacedName:
    """Request key for a namespaced object"""
    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> 'NamespacedName':
        if '/' in value:
            namespace, name = value.split('/', 1)
            return cls(namespace, name)
        return cls('', value)


@dataclass
class ObjectMeta:
    """Metadata carried by every stored object"""
    name: str
    namespace: str = "default"
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None
    uid: Optional[str] = None
    creation_timestamp: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None
    finalizers: List[str] = field(default_factory=list)

    def key(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)


def _is_paused(meta: ObjectMeta) -> bool:
    return meta.annotations.get(PAUSE_ANNOTATION_KEY) == "true"


# ---------------------------------------------------------------------------
# Cluster objects the selector reads
# ---------------------------------------------------------------------------

@dataclass
class Container:
    name: str
    ports: List[int] = field(default_factory=list)


@dataclass
class Pod:
    """Workload pod as seen by the target selector"""
    kind: ClassVar[str] = KIND_POD

    meta: ObjectMeta
    node_name: str = ""
    phase: str = "Running"
    pod_ip: str = ""
    containers: List[Container] = field(default_factory=list)

    def find_container(self, name: str) -> Optional[Container]:
        for container in self.containers:
            if container.name == name:
                return container
        return None


@dataclass
class Node:
    """Cluster node, used for node name and node label selection"""
    kind: ClassVar[str] = KIND_NODE

    meta: ObjectMeta


@dataclass(frozen=True)
class Target:
    """A resolved fault target: a pod, or one container of a pod"""
    namespace: str
    pod: str
    container: Optional[str] = None

    @property
    def id(self) -> str:
        if self.container:
            return f"{self.namespace}/{self.pod}/{self.container}"
        return f"{self.namespace}/{self.pod}"

    @classmethod
    def parse_id(cls, target_id: str) -> 'Target':
        parts = target_id.split('/')
        if len(parts) == 2:
            return cls(parts[0], parts[1])
        if len(parts) == 3:
            return cls(parts[0], parts[1], parts[2])
        raise ValueError(f"invalid target id: {target_id}")


# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------

class SelectorMode(Enum):
    """How many of the matching pods are targeted"""
    ALL = "all"
    ONE = "one"
    FIXED = "fixed"
    FIXED_PERCENT = "fixed-percent"
    RANDOM_MAX_PERCENT = "random-max-percent"


class SelectorOperator(Enum):
    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


@dataclass
class LabelSelectorRequirement:
    """Set-based label requirement, e.g. `tier In (web, api)`"""
    key: str
    operator: SelectorOperator
    values: List[str] = field(default_factory=list)


@dataclass
class SelectorSpec:
    """Declarative description of the pods an experiment targets"""
    namespaces: List[str] = field(default_factory=list)
    nodes: List[str] = field(default_factory=list)
    pods: Dict[str, List[str]] = field(default_factory=dict)  # namespace -> pod names
    node_selectors: Dict[str, str] = field(default_factory=dict)
    field_selectors: Dict[str, str] = field(default_factory=dict)
    label_selectors: Dict[str, str] = field(default_factory=dict)
    expression_selectors: List[LabelSelectorRequirement] = field(default_factory=list)
    annotation_selectors: Dict[str, str] = field(default_factory=dict)
    pod_phase_selectors: List[str] = field(default_factory=list)


@dataclass
class PodSelector:
    selector: SelectorSpec = field(default_factory=SelectorSpec)
    mode: SelectorMode = SelectorMode.ALL
    value: str = ""


@dataclass
class ContainerSelector(PodSelector):
    """Pod selector expanded to one target per named container (all when empty)"""
    container_names: List[str] = field(default_factory=list)


@dataclass
class SchedulerSpec:
    cron: str


# ---------------------------------------------------------------------------
# Fault executor payloads
# ---------------------------------------------------------------------------

class ChainCommand(Enum):
    NEW = "NEW"
    ADD = "ADD"


@dataclass
class Chain:
    """One firewall-chain operation sent to the fault executor"""
    command: ChainCommand
    chain_name: str
    dport: str = ""  # comma-separated ports
    sport: str = ""
    action: str = ""
    probability: str = ""  # percent
    ipset: str = ""


@dataclass
class Tbf:
    """Token bucket filter descriptor, rates in bytes per second"""
    rate: int
    limit: int
    buffer: int
    peak_rate: Optional[int] = None
    min_burst: Optional[int] = None


@dataclass
class Netem:
    time: int = 0  # microseconds
    jitter: int = 0  # microseconds
    delay_corr: float = 0.0
    loss: float = 0.0
    loss_corr: float = 0.0
    duplicate: float = 0.0
    duplicate_corr: float = 0.0
    corrupt: float = 0.0
    corrupt_corr: float = 0.0
    reorder: float = 0.0
    reorder_corr: float = 0.0
    gap: int = 0

    def merge(self, other: 'Netem') -> 'Netem':
        """Combine two netem descriptors, taking the non-zero value of each field"""
        merged = Netem()
        for f in fields(self):
            mine = getattr(self, f.name)
            setattr(merged, f.name, mine if mine else getattr(other, f.name))
        return merged


def _duration_us(value: str) -> int:
    return int(parse_duration(value).total_seconds() * 1000 * 1000)


# ---------------------------------------------------------------------------
# Chaos kinds
# ---------------------------------------------------------------------------

class NetworkChaosAction(Enum):
    NETEM = "netem"
    DELAY = "delay"
    LOSS = "loss"
    DUPLICATE = "duplicate"
    CORRUPT = "corrupt"
    PARTITION = "partition"
    BANDWIDTH = "bandwidth"


class Direction(Enum):
    TO = "to"
    FROM = "from"
    BOTH = "both"


@dataclass
class ReorderSpec:
    reorder: str
    correlation: str = "0"
    gap: int = 0


@dataclass
class DelaySpec:
    latency: str
    correlation: str = "0"
    jitter: str = "0ms"
    reorder: Optional[ReorderSpec] = None

    def to_netem(self) -> Netem:
        netem = Netem(
            time=_duration_us(self.latency),
            jitter=_duration_us(self.jitter),
            delay_corr=parse_percent(self.correlation, 'delay.correlation'),
        )
        if self.reorder is not None:
            netem.reorder = parse_percent(self.reorder.reorder, 'delay.reorder.reorder')
            netem.reorder_corr = parse_percent(self.reorder.correlation, 'delay.reorder.correlation')
            netem.gap = self.reorder.gap
        return netem


@dataclass
class LossSpec:
    loss: str
    correlation: str = "0"

    def to_netem(self) -> Netem:
        return Netem(
            loss=parse_percent(self.loss, 'loss.loss'),
            loss_corr=parse_percent(self.correlation, 'loss.correlation'),
        )


@dataclass
class DuplicateSpec:
    duplicate: str
    correlation: str = "0"

    def to_netem(self) -> Netem:
        return Netem(
            duplicate=parse_percent(self.duplicate, 'duplicate.duplicate'),
            duplicate_corr=parse_percent(self.correlation, 'duplicate.correlation'),
        )


@dataclass
class CorruptSpec:
    corrupt: str
    correlation: str = "0"

    def to_netem(self) -> Netem:
        return Netem(
            corrupt=parse_percent(self.corrupt, 'corrupt.corrupt'),
            corrupt_corr=parse_percent(self.correlation, 'corrupt.correlation'),
        )


@dataclass
class BandwidthSpec:
    rate: str
    limit: int
    buffer: int
    peakrate: Optional[int] = None
    minburst: Optional[int] = None

    def to_tbf(self) -> Tbf:
        return Tbf(
            rate=parse_rate(self.rate),
            limit=self.limit,
            buffer=self.buffer,
            peak_rate=self.peakrate,
            min_burst=self.minburst,
        )


def _netem_unset(spec) -> bool:
    return all(sub is None for sub in (spec.delay, spec.loss, spec.duplicate, spec.corrupt))


def _validate_duration(duration: Optional[str]):
    if duration is not None:
        parse_duration(duration)


@dataclass
class NetworkChaosSpec:
    selector: PodSelector
    action: NetworkChaosAction
    direction: Direction = Direction.TO
    target: Optional[PodSelector] = None
    delay: Optional[DelaySpec] = None
    loss: Optional[LossSpec] = None
    duplicate: Optional[DuplicateSpec] = None
    corrupt: Optional[CorruptSpec] = None
    bandwidth: Optional[BandwidthSpec] = None
    duration: Optional[str] = None
    scheduler: Optional[SchedulerSpec] = None

    def get_selector_specs(self) -> Dict[str, PodSelector]:
        specs = {".": self.selector}
        if self.target is not None:
            specs[".target"] = self.target
        return specs

    def describe_action(self) -> str:
        return self.action.value

    def to_netem(self) -> Netem:
        """Merge every configured netem sub-spec into a single descriptor"""
        netem = Netem()
        for sub_spec in (self.delay, self.loss, self.duplicate, self.corrupt):
            if sub_spec is not None:
                netem = netem.merge(sub_spec.to_netem())
        return netem

    def validate(self):
        _validate_duration(self.duration)
        required = {
            NetworkChaosAction.DELAY: self.delay,
            NetworkChaosAction.LOSS: self.loss,
            NetworkChaosAction.DUPLICATE: self.duplicate,
            NetworkChaosAction.CORRUPT: self.corrupt,
            NetworkChaosAction.BANDWIDTH: self.bandwidth,
        }
        if self.action in required and required[self.action] is None:
            raise MalformedSpecError(f"action {self.action.value} requires the {self.action.value} field")

        if self.action == NetworkChaosAction.BANDWIDTH:
            self.bandwidth.to_tbf()
        elif self.action == NetworkChaosAction.PARTITION:
            if self.direction != Direction.TO and self.target is None:
                raise MalformedSpecError(f"direction {self.direction.value} requires a target selector")
        else:
            self.to_netem()
            if self.action == NetworkChaosAction.NETEM and _netem_unset(self):
                raise MalformedSpecError("action netem requires at least one of delay, loss, duplicate or corrupt")


class HTTPChaosAction(Enum):
    ABORT = "abort"
    DELAY = "delay"
    MIXED = "mixed"


@dataclass
class HTTPChaosSpec:
    selector: PodSelector
    action: HTTPChaosAction
    percent: str = "100"
    delay: Optional[str] = None
    duration: Optional[str] = None
    scheduler: Optional[SchedulerSpec] = None

    def get_selector_specs(self) -> Dict[str, PodSelector]:
        return {".": self.selector}

    def describe_action(self) -> str:
        return self.action.value

    def validate(self):
        _validate_duration(self.duration)
        parse_percent(self.percent)
        if self.action in (HTTPChaosAction.DELAY, HTTPChaosAction.MIXED):
            if self.delay is None:
                raise MalformedSpecError(f"action {self.action.value} requires the delay field")
            parse_duration(self.delay)


class PodChaosAction(Enum):
    POD_KILL = "pod-kill"
    CONTAINER_KILL = "container-kill"


@dataclass
class PodChaosSpec:
    selector: ContainerSelector
    action: PodChaosAction
    grace_period: int = 0
    duration: Optional[str] = None
    scheduler: Optional[SchedulerSpec] = None

    def get_selector_specs(self) -> Dict[str, PodSelector]:
        if self.action == PodChaosAction.POD_KILL:
            # Pod kill targets whole pods
            return {".": PodSelector(self.selector.selector, self.selector.mode, self.selector.value)}
        return {".": self.selector}

    def describe_action(self) -> str:
        return self.action.value

    def validate(self):
        _validate_duration(self.duration)
        if self.grace_period < 0:
            raise MalformedSpecError("gracePeriod must not be negative")
        if self.action == PodChaosAction.CONTAINER_KILL and not self.selector.container_names:
            raise MalformedSpecError("container-kill requires containerNames")


# ---------------------------------------------------------------------------
# Experiments
# ---------------------------------------------------------------------------

class RecordPhase(Enum):
    NOT_INJECTED = "Not Injected"
    INJECTED = "Injected"


class DesiredPhase(Enum):
    RUNNING = "Run"
    STOPPED = "Stop"


@dataclass
class Record:
    """Durable marker of whether the fault is applied to one target"""
    id: str
    selector_key: str
    phase: RecordPhase = RecordPhase.NOT_INJECTED


@dataclass
class ExperimentStatus:
    desired_phase: Optional[DesiredPhase] = None
    records: Optional[List[Record]] = None  # None until the selectors first resolve


@dataclass
class Experiment:
    """An instance of one chaos kind, dispatched by its kind tag"""
    kind: str
    meta: ObjectMeta
    spec: Any
    status: ExperimentStatus = field(default_factory=ExperimentStatus)

    def key(self) -> NamespacedName:
        return self.meta.key()

    def is_paused(self) -> bool:
        return _is_paused(self.meta)

    def is_deleted(self) -> bool:
        return self.meta.deletion_timestamp is not None

    def get_selector_specs(self) -> Dict[str, PodSelector]:
        return self.spec.get_selector_specs()

    def describe_action(self) -> str:
        return self.spec.describe_action()

    def validate(self):
        self.spec.validate()

    def get_duration(self) -> Optional[timedelta]:
        if self.spec.duration is None:
            return None
        return parse_duration(self.spec.duration)

    def duration_exceeded(self, now: datetime) -> Tuple[bool, Optional[timedelta]]:
        """Return whether the duration elapsed, and the time left when it has not"""
        duration = self.get_duration()
        if duration is None or self.meta.creation_timestamp is None:
            return False, None

        stop_time = self.meta.creation_timestamp + duration
        if stop_time <= now:
            return True, timedelta(0)
        return False, stop_time - now

    def all_recovered(self) -> bool:
        records = self.status.records or []
        return all(record.phase == RecordPhase.NOT_INJECTED for record in records)

    def is_finished(self, now: datetime) -> bool:
        exceeded, _ = self.duration_exceeded(now)
        return exceeded and self.all_recovered()


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

class ConcurrencyPolicy(Enum):
    FORBID = "Forbid"
    ALLOW = "Allow"


@dataclass
class ScheduleSpec:
    schedule: str
    type: str  # chaos kind of the spawned jobs
    chaos_spec: Any = None
    history_limit: int = 1
    concurrency_policy: ConcurrencyPolicy = ConcurrencyPolicy.FORBID
    starting_deadline_seconds: Optional[int] = None


@dataclass
class ScheduleStatus:
    active: List[str] = field(default_factory=list)
    last_schedule_time: Optional[datetime] = None


@dataclass
class Schedule:
    kind: ClassVar[str] = KIND_SCHEDULE

    meta: ObjectMeta
    spec: ScheduleSpec
    status: ScheduleStatus = field(default_factory=ScheduleStatus)

    def key(self) -> NamespacedName:
        return self.meta.key()

    def is_paused(self) -> bool:
        return _is_paused(self.meta)

    def is_deleted(self) -> bool:
        return self.meta.deletion_timestamp is not None


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

class TemplateType:
    """Built-in template types; any other type string names a chaos kind"""
    SERIAL = "Serial"
    PARALLEL = "Parallel"
    SUSPEND = "Suspend"
    TASK = "Task"

    BUILTIN = (SERIAL, PARALLEL, SUSPEND, TASK)


def is_chaos_template(template_type: str) -> bool:
    return template_type not in TemplateType.BUILTIN


class ConditionType(Enum):
    ACCOMPLISHED = "Accomplished"
    DEADLINE_EXCEED = "DeadlineExceed"
    CHAOS_INJECTED = "ChaosInjected"
    SCHEDULED = "Scheduled"


class ConditionStatus(Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class Condition:
    type: ConditionType
    status: ConditionStatus
    reason: str = ""


@dataclass
class Template:
    name: str
    type: str
    deadline: Optional[str] = None
    tasks: List[str] = field(default_factory=list)
    embed_chaos: Any = None  # kind spec for chaos templates


@dataclass
class WorkflowSpec:
    entry: str
    templates: List[Template] = field(default_factory=list)

    def find_template(self, name: str) -> Optional[Template]:
        for template in self.templates:
            if template.name == name:
                return template
        return None


@dataclass
class WorkflowStatus:
    entry_node: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    conditions: List[Condition] = field(default_factory=list)


@dataclass
class Workflow:
    kind: ClassVar[str] = KIND_WORKFLOW

    meta: ObjectMeta
    spec: WorkflowSpec
    status: WorkflowStatus = field(default_factory=WorkflowStatus)

    def key(self) -> NamespacedName:
        return self.meta.key()

    def is_deleted(self) -> bool:
        return self.meta.deletion_timestamp is not None


@dataclass
class WorkflowNodeSpec:
    template_name: str
    workflow_name: str
    type: str
    start_time: Optional[datetime] = None
    deadline: Optional[datetime] = None
    tasks: List[str] = field(default_factory=list)
    originating_task: Optional[str] = None
    parent_node: Optional[str] = None
    embed_chaos: Any = None


@dataclass
class WorkflowNodeStatus:
    active_children: List[str] = field(default_factory=list)
    finished_children: List[str] = field(default_factory=list)
    chaos_resource: Optional[str] = None
    conditions: List[Condition] = field(default_factory=list)


@dataclass
class WorkflowNode:
    kind: ClassVar[str] = KIND_WORKFLOW_NODE

    meta: ObjectMeta
    spec: WorkflowNodeSpec
    status: WorkflowNodeStatus = field(default_factory=WorkflowNodeStatus)

    def key(self) -> NamespacedName:
        return self.meta.key()

    def is_deleted(self) -> bool:
        return self.meta.deletion_timestamp is not None


# ---------------------------------------------------------------------------
# Reconcile plumbing
# ---------------------------------------------------------------------------

@dataclass
class Result:
    """Outcome of one reconcile pass"""
    requeue: bool = False
    requeue_after: Optional[float] = None  # seconds


class EventType(Enum):
    NORMAL = "Normal"
    WARNING = "Warning"


@dataclass
class Event:
    kind: str
    key: NamespacedName
    event_type: EventType
    reason: str
    message: str
    timestamp: Optional[datetime] = None
