"""
Manifest Utilities - Conversion between Kubernetes-shaped dicts and models

Objects are read from and written to the same camelCase layout the cluster
API serves, so the in-memory store, the cluster store and local YAML files
all share one codec.
"""
import yaml
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ChaosControllerError, MalformedSpecError, UnsupportedKindError
from .models import (
    API_GROUP, API_VERSION, KIND_NODE, KIND_POD, KIND_SCHEDULE, KIND_WORKFLOW, KIND_WORKFLOW_NODE,
    BandwidthSpec, ConcurrencyPolicy, Condition, ConditionStatus, ConditionType, Container,
    ContainerSelector, CorruptSpec, DelaySpec, DesiredPhase, Direction, DuplicateSpec, Experiment,
    ExperimentStatus, HTTPChaosAction, HTTPChaosSpec, LabelSelectorRequirement, LossSpec,
    NetworkChaosAction, NetworkChaosSpec, Node, ObjectMeta, Pod, PodChaosAction, PodChaosSpec,
    PodSelector, Record, RecordPhase, ReorderSpec, Schedule, ScheduleSpec, ScheduleStatus,
    SchedulerSpec, SelectorMode, SelectorOperator, SelectorSpec, Template, TemplateType, Workflow,
    WorkflowNode, WorkflowNodeSpec, WorkflowNodeStatus, WorkflowSpec, WorkflowStatus,
    is_chaos_template
)
from .utils.parsing import parse_duration


def _drop_empty(data: dict) -> dict:
    return {key: value for key, value in data.items() if value not in (None, {}, [], "")}


def parse_time(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def spec_key(kind: str) -> str:
    """Field name under which a chaos kind is embedded, e.g. NetworkChaos -> networkChaos, HTTPChaos -> httpChaos"""
    upper = len(kind) - len(kind.lstrip("ABCDEFGHIJKLMNOPQRSTUVWXYZ"))
    # A leading acronym is lowered up to the capital that starts the next word
    cut = 1 if upper <= 1 or upper == len(kind) else upper - 1
    return kind[:cut].lower() + kind[cut:]


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

def parse_meta(data: dict, default_namespace: str = "default") -> ObjectMeta:
    return ObjectMeta(
        name=data['name'],
        namespace=data.get('namespace', default_namespace),
        labels=dict(data.get('labels') or {}),
        annotations=dict(data.get('annotations') or {}),
        resource_version=data.get('resourceVersion'),
        uid=data.get('uid'),
        creation_timestamp=parse_time(data.get('creationTimestamp')),
        deletion_timestamp=parse_time(data.get('deletionTimestamp')),
        finalizers=list(data.get('finalizers') or []),
    )


def dump_meta(meta: ObjectMeta) -> dict:
    return _drop_empty({
        'name': meta.name,
        'namespace': meta.namespace,
        'labels': dict(meta.labels),
        'annotations': dict(meta.annotations),
        'resourceVersion': meta.resource_version,
        'uid': meta.uid,
        'creationTimestamp': format_time(meta.creation_timestamp),
        'deletionTimestamp': format_time(meta.deletion_timestamp),
        'finalizers': list(meta.finalizers),
    })


# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------

def parse_selector_spec(data: Optional[dict]) -> SelectorSpec:
    data = data or {}
    return SelectorSpec(
        namespaces=list(data.get('namespaces') or []),
        nodes=list(data.get('nodes') or []),
        pods={ns: list(names) for ns, names in (data.get('pods') or {}).items()},
        node_selectors=dict(data.get('nodeSelectors') or {}),
        field_selectors=dict(data.get('fieldSelectors') or {}),
        label_selectors=dict(data.get('labelSelectors') or {}),
        expression_selectors=[
            LabelSelectorRequirement(
                key=item['key'],
                operator=SelectorOperator(item['operator']),
                values=list(item.get('values') or []),
            )
            for item in data.get('expressionSelectors') or []
        ],
        annotation_selectors=dict(data.get('annotationSelectors') or {}),
        pod_phase_selectors=list(data.get('podPhaseSelectors') or []),
    )


def dump_selector_spec(spec: SelectorSpec) -> dict:
    return _drop_empty({
        'namespaces': list(spec.namespaces),
        'nodes': list(spec.nodes),
        'pods': {ns: list(names) for ns, names in spec.pods.items()},
        'nodeSelectors': dict(spec.node_selectors),
        'fieldSelectors': dict(spec.field_selectors),
        'labelSelectors': dict(spec.label_selectors),
        'expressionSelectors': [
            _drop_empty({'key': req.key, 'operator': req.operator.value, 'values': list(req.values)})
            for req in spec.expression_selectors
        ],
        'annotationSelectors': dict(spec.annotation_selectors),
        'podPhaseSelectors': list(spec.pod_phase_selectors),
    })


def parse_pod_selector(data: dict) -> PodSelector:
    return PodSelector(
        selector=parse_selector_spec(data.get('selector')),
        mode=SelectorMode(data.get('mode', SelectorMode.ALL.value)),
        value=str(data.get('value', "")),
    )


def parse_container_selector(data: dict) -> ContainerSelector:
    pod_selector = parse_pod_selector(data)
    return ContainerSelector(
        selector=pod_selector.selector,
        mode=pod_selector.mode,
        value=pod_selector.value,
        container_names=list(data.get('containerNames') or []),
    )


def dump_pod_selector(selector: PodSelector) -> dict:
    data = {
        'selector': dump_selector_spec(selector.selector),
        'mode': selector.mode.value,
    }
    if selector.value:
        data['value'] = selector.value
    if isinstance(selector, ContainerSelector) and selector.container_names:
        data['containerNames'] = list(selector.container_names)
    return data


# ---------------------------------------------------------------------------
# Chaos kind specs
# ---------------------------------------------------------------------------

def _parse_scheduler(data: dict) -> Optional[SchedulerSpec]:
    if not data.get('scheduler'):
        return None
    return SchedulerSpec(cron=data['scheduler']['cron'])


def _dump_common(spec) -> dict:
    return _drop_empty({
        'duration': spec.duration,
        'scheduler': {'cron': spec.scheduler.cron} if spec.scheduler else None,
    })


def _parse_correlated(data: Optional[dict], cls, value_key: str):
    if data is None:
        return None
    return cls(str(data[value_key]), correlation=str(data.get('correlation', "0")))


def parse_network_chaos_spec(data: dict) -> NetworkChaosSpec:
    delay = None
    if data.get('delay') is not None:
        delay_data = data['delay']
        reorder = None
        if delay_data.get('reorder') is not None:
            reorder = ReorderSpec(
                reorder=str(delay_data['reorder']['reorder']),
                correlation=str(delay_data['reorder'].get('correlation', "0")),
                gap=int(delay_data['reorder'].get('gap', 0)),
            )
        delay = DelaySpec(
            latency=str(delay_data['latency']),
            correlation=str(delay_data.get('correlation', "0")),
            jitter=str(delay_data.get('jitter', "0ms")),
            reorder=reorder,
        )

    bandwidth = None
    if data.get('bandwidth') is not None:
        bw = data['bandwidth']
        bandwidth = BandwidthSpec(
            rate=str(bw['rate']),
            limit=int(bw['limit']),
            buffer=int(bw['buffer']),
            peakrate=bw.get('peakrate'),
            minburst=bw.get('minburst'),
        )

    return NetworkChaosSpec(
        selector=parse_pod_selector(data),
        action=NetworkChaosAction(data['action']),
        direction=Direction(data.get('direction', Direction.TO.value)),
        target=parse_pod_selector(data['target']) if data.get('target') else None,
        delay=delay,
        loss=_parse_correlated(data.get('loss'), LossSpec, 'loss'),
        duplicate=_parse_correlated(data.get('duplicate'), DuplicateSpec, 'duplicate'),
        corrupt=_parse_correlated(data.get('corrupt'), CorruptSpec, 'corrupt'),
        bandwidth=bandwidth,
        duration=data.get('duration'),
        scheduler=_parse_scheduler(data),
    )


def dump_network_chaos_spec(spec: NetworkChaosSpec) -> dict:
    data = dump_pod_selector(spec.selector)
    data['action'] = spec.action.value
    data['direction'] = spec.direction.value
    if spec.target is not None:
        data['target'] = dump_pod_selector(spec.target)
    if spec.delay is not None:
        data['delay'] = _drop_empty({
            'latency': spec.delay.latency,
            'correlation': spec.delay.correlation,
            'jitter': spec.delay.jitter,
            'reorder': {
                'reorder': spec.delay.reorder.reorder,
                'correlation': spec.delay.reorder.correlation,
                'gap': spec.delay.reorder.gap,
            } if spec.delay.reorder else None,
        })
    if spec.loss is not None:
        data['loss'] = {'loss': spec.loss.loss, 'correlation': spec.loss.correlation}
    if spec.duplicate is not None:
        data['duplicate'] = {'duplicate': spec.duplicate.duplicate, 'correlation': spec.duplicate.correlation}
    if spec.corrupt is not None:
        data['corrupt'] = {'corrupt': spec.corrupt.corrupt, 'correlation': spec.corrupt.correlation}
    if spec.bandwidth is not None:
        data['bandwidth'] = _drop_empty({
            'rate': spec.bandwidth.rate,
            'limit': spec.bandwidth.limit,
            'buffer': spec.bandwidth.buffer,
            'peakrate': spec.bandwidth.peakrate,
            'minburst': spec.bandwidth.minburst,
        })
    data.update(_dump_common(spec))
    return data


def parse_http_chaos_spec(data: dict) -> HTTPChaosSpec:
    return HTTPChaosSpec(
        selector=parse_pod_selector(data),
        action=HTTPChaosAction(data['action']),
        percent=str(data.get('percent', "100")),
        delay=data.get('delay'),
        duration=data.get('duration'),
        scheduler=_parse_scheduler(data),
    )


def dump_http_chaos_spec(spec: HTTPChaosSpec) -> dict:
    data = dump_pod_selector(spec.selector)
    data['action'] = spec.action.value
    data['percent'] = spec.percent
    if spec.delay is not None:
        data['delay'] = spec.delay
    data.update(_dump_common(spec))
    return data


def parse_pod_chaos_spec(data: dict) -> PodChaosSpec:
    return PodChaosSpec(
        selector=parse_container_selector(data),
        action=PodChaosAction(data['action']),
        grace_period=int(data.get('gracePeriod', 0)),
        duration=data.get('duration'),
        scheduler=_parse_scheduler(data),
    )


def dump_pod_chaos_spec(spec: PodChaosSpec) -> dict:
    data = dump_pod_selector(spec.selector)
    data['action'] = spec.action.value
    if spec.grace_period:
        data['gracePeriod'] = spec.grace_period
    data.update(_dump_common(spec))
    return data


# ---------------------------------------------------------------------------
# Status and conditions
# ---------------------------------------------------------------------------

def parse_conditions(items: Optional[list]) -> List[Condition]:
    return [
        Condition(
            type=ConditionType(item['type']),
            status=ConditionStatus(item['status']),
            reason=item.get('reason', ""),
        )
        for item in items or []
    ]


def dump_conditions(conditions: List[Condition]) -> list:
    return [
        _drop_empty({'type': c.type.value, 'status': c.status.value, 'reason': c.reason})
        for c in conditions
    ]


def parse_experiment_status(data: Optional[dict]) -> ExperimentStatus:
    experiment = (data or {}).get('experiment') or {}
    desired = experiment.get('desiredPhase')
    records = experiment.get('containerRecords')
    return ExperimentStatus(
        desired_phase=DesiredPhase(desired) if desired else None,
        records=None if records is None else [
            Record(
                id=item['id'],
                selector_key=item['selectorKey'],
                phase=RecordPhase(item.get('phase', RecordPhase.NOT_INJECTED.value)),
            )
            for item in records
        ],
    )


def dump_experiment_status(status: ExperimentStatus) -> dict:
    experiment = {}
    if status.desired_phase is not None:
        experiment['desiredPhase'] = status.desired_phase.value
    if status.records is not None:
        experiment['containerRecords'] = [
            {'id': r.id, 'selectorKey': r.selector_key, 'phase': r.phase.value}
            for r in status.records
        ]
    return {'experiment': experiment}


# ---------------------------------------------------------------------------
# Whole objects
# ---------------------------------------------------------------------------

def _parse_embedded_chaos(data: dict, template_type: str, registry) -> Any:
    if not is_chaos_template(template_type):
        return None
    descriptor = registry.get(template_type)
    embedded = data.get(spec_key(template_type))
    if embedded is None:
        raise MalformedSpecError(f"template of type {template_type} has no {spec_key(template_type)} field")
    return descriptor.parse_spec(embedded)


def _dump_embedded_chaos(template_type: str, spec: Any, registry) -> dict:
    if spec is None or not is_chaos_template(template_type):
        return {}
    return {spec_key(template_type): registry.get(template_type).dump_spec(spec)}


def parse_template(data: dict, registry) -> Template:
    template_type = data['templateType']
    return Template(
        name=data['name'],
        type=template_type,
        deadline=data.get('deadline'),
        tasks=list(data.get('children') or []),
        embed_chaos=_parse_embedded_chaos(data, template_type, registry),
    )


def dump_template(template: Template, registry) -> dict:
    data = _drop_empty({
        'name': template.name,
        'templateType': template.type,
        'deadline': template.deadline,
        'children': list(template.tasks),
    })
    data.update(_dump_embedded_chaos(template.type, template.embed_chaos, registry))
    return data


def _parse_pod(data: dict) -> Pod:
    spec = data.get('spec') or {}
    status = data.get('status') or {}
    return Pod(
        meta=parse_meta(data['metadata']),
        node_name=spec.get('nodeName', ""),
        phase=status.get('phase', "Running"),
        pod_ip=status.get('podIP', ""),
        containers=[
            Container(
                name=c['name'],
                ports=[int(p['containerPort']) for p in c.get('ports') or []],
            )
            for c in spec.get('containers') or []
        ],
    )


def _dump_pod(pod: Pod) -> dict:
    return {
        'spec': _drop_empty({
            'nodeName': pod.node_name,
            'containers': [
                _drop_empty({'name': c.name, 'ports': [{'containerPort': p} for p in c.ports]})
                for c in pod.containers
            ],
        }),
        'status': _drop_empty({'phase': pod.phase, 'podIP': pod.pod_ip}),
    }


def _parse_schedule(data: dict, registry) -> Schedule:
    spec = data['spec']
    status = data.get('status') or {}
    kind = spec['type']
    descriptor = registry.get(kind)
    return Schedule(
        meta=parse_meta(data['metadata']),
        spec=ScheduleSpec(
            schedule=spec['schedule'],
            type=kind,
            chaos_spec=descriptor.parse_spec(spec[spec_key(kind)]) if spec.get(spec_key(kind)) else None,
            history_limit=int(spec.get('historyLimit', 1)),
            concurrency_policy=ConcurrencyPolicy(spec.get('concurrencyPolicy', ConcurrencyPolicy.FORBID.value)),
            starting_deadline_seconds=spec.get('startingDeadlineSeconds'),
        ),
        status=ScheduleStatus(
            active=list(status.get('active') or []),
            last_schedule_time=parse_time(status.get('lastScheduleTime')),
        ),
    )


def _dump_schedule(schedule: Schedule, registry) -> dict:
    spec = _drop_empty({
        'schedule': schedule.spec.schedule,
        'type': schedule.spec.type,
        'historyLimit': schedule.spec.history_limit,
        'concurrencyPolicy': schedule.spec.concurrency_policy.value,
        'startingDeadlineSeconds': schedule.spec.starting_deadline_seconds,
    })
    spec.update(_dump_embedded_chaos(schedule.spec.type, schedule.spec.chaos_spec, registry))
    return {
        'spec': spec,
        'status': _drop_empty({
            'active': list(schedule.status.active),
            'lastScheduleTime': format_time(schedule.status.last_schedule_time),
        }),
    }


def _parse_workflow(data: dict, registry) -> Workflow:
    spec = data['spec']
    status = data.get('status') or {}
    return Workflow(
        meta=parse_meta(data['metadata']),
        spec=WorkflowSpec(
            entry=spec['entry'],
            templates=[parse_template(t, registry) for t in spec.get('templates') or []],
        ),
        status=WorkflowStatus(
            entry_node=status.get('entryNode'),
            start_time=parse_time(status.get('startTime')),
            end_time=parse_time(status.get('endTime')),
            conditions=parse_conditions(status.get('conditions')),
        ),
    )


def _dump_workflow(workflow: Workflow, registry) -> dict:
    return {
        'spec': {
            'entry': workflow.spec.entry,
            'templates': [dump_template(t, registry) for t in workflow.spec.templates],
        },
        'status': _drop_empty({
            'entryNode': workflow.status.entry_node,
            'startTime': format_time(workflow.status.start_time),
            'endTime': format_time(workflow.status.end_time),
            'conditions': dump_conditions(workflow.status.conditions),
        }),
    }


def _parse_workflow_node(data: dict, registry) -> WorkflowNode:
    spec = data['spec']
    status = data.get('status') or {}
    return WorkflowNode(
        meta=parse_meta(data['metadata']),
        spec=WorkflowNodeSpec(
            template_name=spec['templateName'],
            workflow_name=spec['workflowName'],
            type=spec['type'],
            start_time=parse_time(spec.get('startTime')),
            deadline=parse_time(spec.get('deadline')),
            tasks=list(spec.get('children') or []),
            originating_task=spec.get('originatingTask'),
            parent_node=spec.get('parentNode'),
            embed_chaos=_parse_embedded_chaos(spec, spec['type'], registry)
            if spec.get(spec_key(spec['type'])) else None,
        ),
        status=WorkflowNodeStatus(
            active_children=list(status.get('activeChildren') or []),
            finished_children=list(status.get('finishedChildren') or []),
            chaos_resource=status.get('chaosResource'),
            conditions=parse_conditions(status.get('conditions')),
        ),
    )


def _dump_workflow_node(node: WorkflowNode, registry) -> dict:
    spec = _drop_empty({
        'templateName': node.spec.template_name,
        'workflowName': node.spec.workflow_name,
        'type': node.spec.type,
        'startTime': format_time(node.spec.start_time),
        'deadline': format_time(node.spec.deadline),
        'children': list(node.spec.tasks),
        'originatingTask': node.spec.originating_task,
        'parentNode': node.spec.parent_node,
    })
    spec.update(_dump_embedded_chaos(node.spec.type, node.spec.embed_chaos, registry))
    return {
        'spec': spec,
        'status': _drop_empty({
            'activeChildren': list(node.status.active_children),
            'finishedChildren': list(node.status.finished_children),
            'chaosResource': node.status.chaos_resource,
            'conditions': dump_conditions(node.status.conditions),
        }),
    }


def object_from_dict(data: dict, registry) -> Any:
    """Build a model object from a Kubernetes-shaped dict"""
    if not isinstance(data, dict):
        raise MalformedSpecError(f"manifest must be a mapping, got {type(data).__name__}")

    kind = data.get('kind')
    name = (data.get('metadata') or {}).get('name', '<unnamed>')
    try:
        if kind == KIND_POD:
            return _parse_pod(data)
        if kind == KIND_NODE:
            return Node(meta=parse_meta(data['metadata'], default_namespace=""))
        if kind == KIND_SCHEDULE:
            return _parse_schedule(data, registry)
        if kind == KIND_WORKFLOW:
            return _parse_workflow(data, registry)
        if kind == KIND_WORKFLOW_NODE:
            return _parse_workflow_node(data, registry)

        descriptor = registry.get(kind)
        return Experiment(
            kind=kind,
            meta=parse_meta(data['metadata']),
            spec=descriptor.parse_spec(data['spec']),
            status=parse_experiment_status(data.get('status')),
        )
    except (MalformedSpecError, UnsupportedKindError):
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedSpecError(f"invalid {kind} {name}: {e}")


def object_to_dict(obj: Any, registry) -> dict:
    """Render a model object in the layout the cluster API serves"""
    if obj.kind in (KIND_POD, KIND_NODE):
        data = {'apiVersion': 'v1', 'kind': obj.kind, 'metadata': dump_meta(obj.meta)}
        if obj.kind == KIND_POD:
            data.update(_dump_pod(obj))
        return data

    data = {
        'apiVersion': f"{API_GROUP}/{API_VERSION}",
        'kind': obj.kind,
        'metadata': dump_meta(obj.meta),
    }
    if obj.kind == KIND_SCHEDULE:
        data.update(_dump_schedule(obj, registry))
    elif obj.kind == KIND_WORKFLOW:
        data.update(_dump_workflow(obj, registry))
    elif obj.kind == KIND_WORKFLOW_NODE:
        data.update(_dump_workflow_node(obj, registry))
    else:
        data['spec'] = registry.get(obj.kind).dump_spec(obj.spec)
        data['status'] = dump_experiment_status(obj.status)
    return data


class ManifestLoader:
    """Loads multi-document YAML manifests into model objects"""

    def __init__(self, registry):
        self.registry = registry

    def load_from_file(self, file_path: Union[str, Path]) -> List[Any]:
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Manifest file not found: {file_path}")

        with open(file_path, 'r') as f:
            text = f.read()
        try:
            return self.load_from_string(text)
        except MalformedSpecError as e:
            raise MalformedSpecError(f"{file_path}: {e}")

    def load_from_string(self, text: str) -> List[Any]:
        return [object_from_dict(doc, self.registry) for doc in self.load_documents(text)]

    @staticmethod
    def load_documents(text: str) -> List[dict]:
        try:
            return [doc for doc in yaml.safe_load_all(text) if doc is not None]
        except yaml.YAMLError as e:
            raise MalformedSpecError(f"Invalid YAML syntax: {e}")

    def dump_to_string(self, objects: List[Any]) -> str:
        return yaml.safe_dump_all(
            [object_to_dict(obj, self.registry) for obj in objects],
            default_flow_style=False,
            sort_keys=False,
        )


class ManifestValidator:
    """Validator for manifests with detailed error reporting"""

    def __init__(self, registry):
        self.registry = registry

    def validate_structure(self, doc: dict) -> list:
        """Validate one manifest document, returning a list of error strings"""
        errors = []

        if not isinstance(doc, dict):
            return [f"Manifest must be a mapping, got {type(doc).__name__}"]

        for required in ('apiVersion', 'kind', 'metadata'):
            if required not in doc:
                errors.append(f"Missing required field: {required}")
        if errors:
            return errors

        kind = doc['kind']
        if not (doc.get('metadata') or {}).get('name'):
            errors.append("Missing required field: metadata.name")

        known = (KIND_POD, KIND_NODE, KIND_SCHEDULE, KIND_WORKFLOW, KIND_WORKFLOW_NODE)
        if kind not in known and kind not in self.registry:
            errors.append(f"Unknown kind: {kind}")
            return errors

        if kind not in (KIND_POD, KIND_NODE) and 'spec' not in doc:
            errors.append(f"{kind} requires a spec")
            return errors

        if kind == KIND_WORKFLOW:
            errors.extend(self._validate_workflow(doc['spec']))
        elif kind == KIND_SCHEDULE:
            schedule_type = doc['spec'].get('type')
            if schedule_type not in self.registry:
                errors.append(f"Schedule type must be a chaos kind, got {schedule_type}")
        if errors:
            return errors

        try:
            obj = object_from_dict(doc, self.registry)
            self._validate_object(obj)
        except ChaosControllerError as e:
            errors.append(str(e))

        return errors

    def _validate_workflow(self, spec: dict) -> list:
        errors = []
        templates = spec.get('templates') or []
        if not templates:
            errors.append("missing required templates in workflow spec")
            return errors

        names = [t.get('name') for t in templates]
        if spec.get('entry') not in names:
            errors.append(f"Entry template {spec.get('entry')} is not defined")

        for template in templates:
            template_type = template.get('templateType')
            if template_type not in TemplateType.BUILTIN and template_type not in self.registry:
                errors.append(f"Template {template.get('name')} has unsupported type {template_type}")
            for task in template.get('children') or []:
                if task not in names:
                    errors.append(f"Template {template.get('name')} references undefined template {task}")
            if template_type in (TemplateType.SERIAL, TemplateType.PARALLEL) and not template.get('children'):
                errors.append(f"Template {template.get('name')} of type {template_type} has no children")
        return errors

    @staticmethod
    def _validate_object(obj: Any):
        if isinstance(obj, Experiment):
            obj.validate()
        elif isinstance(obj, Schedule) and obj.spec.chaos_spec is not None:
            obj.spec.chaos_spec.validate()
        elif isinstance(obj, Workflow):
            for template in obj.spec.templates:
                if template.embed_chaos is not None:
                    template.embed_chaos.validate()
                if template.deadline is not None:
                    parse_duration(template.deadline)

    def validate_documents(self, docs: List[dict]) -> Dict[str, list]:
        """Validate many documents, keyed by `<kind>/<name>`"""
        report = {}
        for index, doc in enumerate(docs):
            if isinstance(doc, dict):
                label = f"{doc.get('kind', '?')}/{(doc.get('metadata') or {}).get('name', index)}"
            else:
                label = f"?/{index}"
            report[label] = self.validate_structure(doc)
        return report
