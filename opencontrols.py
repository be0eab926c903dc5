"""
OpenControl workspace loader.

Reads the component files of an OpenControl workspace:

    <workspace>/components/<component>/component.yaml

    name: Amazon Elastic Compute Cloud
    key: EC2
    responsible_role: AWS Staff
    satisfies:
    - control_key: AC-2 (1)
      standard_key: FedRAMP-moderate
      control_origins: [shared]           # or control_origin: shared
      implementation_status: complete     # or implementation_statuses: [...]
      parameters:
      - key: AC-2(1)(a)
        text: 90 days

and answers the per-control questions the SSP templater asks.
"""

import logging
import os

import yaml

from vocabulary import IMPLEMENTATION, ORIGINATION

logger = logging.getLogger(__name__)

COMPONENT_FILENAME = 'component.yaml'
COMPONENTS_DIR = 'components'
JOIN_SEPARATOR = '; '


class OpenControlError(Exception):
    """The workspace or one of its component files could not be read."""


def _normalize_control(control):
    return ' '.join((control or '').split())


def _normalize_parameter_id(param_id):
    return str(param_id).replace(' ', '').strip()


class ControlOrigins:
    def __init__(self, origins=()):
        self._origins = frozenset(origins)

    def get_checked_origins(self):
        return set(self._origins)


class ImplementationStatuses:
    def __init__(self, statuses=()):
        self._statuses = frozenset(statuses)

    def get_checked_implementation_statuses(self):
        return set(self._statuses)


class Satisfy:
    """One entry of a component's `satisfies` list."""

    def __init__(self, control_key, standard_key='', parameters=None,
                 origins=(), statuses=()):
        self.control_key = _normalize_control(control_key)
        self.standard_key = standard_key
        self.parameters = parameters or []   # [(key, text)] in file order
        self.origins = frozenset(origins)
        self.statuses = frozenset(statuses)


class Component:
    def __init__(self, name, key='', responsible_role='', satisfies=None):
        self.name = name
        self.key = key
        self.responsible_role = responsible_role
        self.satisfies = satisfies or []

    def satisfies_control(self, control):
        control = _normalize_control(control)
        return [s for s in self.satisfies if s.control_key == control]

    def __repr__(self):
        return f"Component({self.name!r}, {len(self.satisfies)} control(s))"


class Data:
    """All components of a workspace, queried by control name."""

    def __init__(self, components=None):
        self.components = components or []

    def _satisfying(self, control):
        """(component, satisfy) pairs for a control, in load order."""
        for component in self.components:
            for satisfy in component.satisfies_control(control):
                yield component, satisfy

    def get_responsible_roles(self, control):
        roles = []
        seen = set()
        for component, _ in self._satisfying(control):
            if not component.responsible_role or component.name in seen:
                continue
            seen.add(component.name)
            roles.append(f"{component.name}: {component.responsible_role}")
        return JOIN_SEPARATOR.join(roles)

    def get_parameter(self, control, param_id):
        wanted = _normalize_parameter_id(param_id)
        texts = []
        for _, satisfy in self._satisfying(control):
            for key, text in satisfy.parameters:
                if _normalize_parameter_id(key) == wanted and text:
                    texts.append(text)
        return JOIN_SEPARATOR.join(texts)

    def get_control_origins(self, control):
        origins = set()
        for _, satisfy in self._satisfying(control):
            origins |= satisfy.origins
        return ControlOrigins(origins)

    def get_implementation_statuses(self, control):
        statuses = set()
        for _, satisfy in self._satisfying(control):
            statuses |= satisfy.statuses
        return ImplementationStatuses(statuses)

    def controls(self):
        """Every control key mentioned by any component."""
        return sorted({s.control_key for c in self.components for s in c.satisfies})


# ─── Loading ────────────────────────────────────────────────────────────────

def load_from(workspace_dir):
    """Load every component under <workspace_dir>/components."""
    components_dir = os.path.join(workspace_dir, COMPONENTS_DIR)
    if not os.path.isdir(components_dir):
        raise OpenControlError(f"No components directory in workspace: {workspace_dir}")

    component_paths = []
    for root_dir, dirs, files in os.walk(components_dir):
        dirs.sort()
        if COMPONENT_FILENAME in files:
            component_paths.append(os.path.join(root_dir, COMPONENT_FILENAME))

    components = []
    for path in component_paths:
        component = load_component(path)
        if component is not None:
            components.append(component)

    logger.info("Loaded %d component(s) from %s", len(components), workspace_dir)
    return Data(components)


def load_component(path):
    """Parse one component.yaml. Returns None if the file is not a mapping."""
    try:
        with open(path, encoding='utf-8') as f:
            raw = yaml.safe_load(f)
    except OSError as exc:
        raise OpenControlError(f"Unable to read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise OpenControlError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        logger.warning("Skipping %s: expected a mapping at the top level", path)
        return None

    name = raw.get('name') or raw.get('key') or os.path.basename(os.path.dirname(path))
    satisfies = [
        _parse_satisfy(entry, name)
        for entry in raw.get('satisfies') or []
        if isinstance(entry, dict) and entry.get('control_key')
    ]
    return Component(
        name=str(name),
        key=str(raw.get('key') or ''),
        responsible_role=str(raw.get('responsible_role') or '').strip(),
        satisfies=satisfies,
    )


def _parse_satisfy(entry, component_name):
    return Satisfy(
        control_key=str(entry['control_key']),
        standard_key=str(entry.get('standard_key') or ''),
        parameters=_parse_parameters(entry.get('parameters')),
        origins=_parse_keywords(entry, 'control_origin', 'control_origins',
                                ORIGINATION, component_name),
        statuses=_parse_keywords(entry, 'implementation_status', 'implementation_statuses',
                                 IMPLEMENTATION, component_name),
    )


def _parse_parameters(raw):
    """Accepts a list of {key, text} mappings or a plain key → text mapping."""
    if not raw:
        return []
    if isinstance(raw, dict):
        return [(str(k), str(v or '').strip()) for k, v in raw.items()]
    parameters = []
    for item in raw:
        if isinstance(item, dict) and 'key' in item:
            parameters.append((str(item['key']), str(item.get('text') or '').strip()))
    return parameters


def _parse_keywords(entry, single_field, list_field, vocabulary, component_name):
    """Collect the keys named by `single_field` and/or `list_field`."""
    keywords = []
    if entry.get(single_field):
        keywords.append(entry[single_field])
    listed = entry.get(list_field) or []
    if isinstance(listed, str):
        listed = [listed]
    keywords.extend(listed)

    keys = set()
    for keyword in keywords:
        key = vocabulary.key_for_data_text(str(keyword).strip())
        if key == vocabulary.no_status:
            logger.warning("%s: unknown %s %r for %s", component_name,
                           vocabulary.name, keyword, entry.get('control_key'))
            continue
        keys.add(key)
    return keys
