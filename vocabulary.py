"""
Status vocabularies shared by the SSP and the OpenControl data.

Each vocabulary maps an abstract status key to the text that represents it in
each source:

  SSP   – the prose printed next to a checkbox in the Word document
  YAML  – the keyword used in an OpenControl component file

The tables are built once at import time and never mutated.
"""

import enum
from types import MappingProxyType


class Source(enum.Enum):
    """Where a piece of text came from."""
    SSP = 'SSP'
    YAML = 'YAML'

    def __str__(self):
        return self.value


class Origin(enum.Enum):
    """Control origination keys."""
    NO_ORIGIN = 0
    SERVICE_PROVIDER_CORPORATE = 1
    SERVICE_PROVIDER_SYSTEM_SPECIFIC = 2
    SERVICE_PROVIDER_HYBRID = 3
    CONFIGURED_BY_CUSTOMER = 4
    PROVIDED_BY_CUSTOMER = 5
    SHARED = 6
    INHERITED = 7


class ImplementationStatus(enum.Enum):
    """Implementation status keys."""
    NO_STATUS = 0
    IMPLEMENTED = 1
    PARTIAL = 2
    PLANNED = 3
    NOT_APPLICABLE = 4


class Vocabulary:
    """
    An ordered, read-only Key -> {Source: text} table.

    The declaration order is the precedence order used when classifying
    document text: the first key whose SSP phrase appears in the text wins.
    """

    def __init__(self, name, no_status, entries):
        self.name = name
        self.no_status = no_status
        self._order = tuple(key for key, _, _ in entries)
        self._mappings = MappingProxyType({
            key: MappingProxyType({Source.SSP: ssp_text, Source.YAML: yaml_text})
            for key, ssp_text, yaml_text in entries
        })
        self._by_yaml = MappingProxyType(
            {yaml_text: key for key, _, yaml_text in entries})

    def keys(self):
        """Named keys in precedence order (the no-status key is excluded)."""
        return self._order

    def source_mapping(self, key):
        """Return {Source.SSP: text, Source.YAML: text} for a named key."""
        if key not in self._mappings:
            raise KeyError(f"{self.name} has no text for {key!r}")
        return self._mappings[key]

    def text_for(self, key, source):
        return self.source_mapping(key)[source]

    def matches_document_text(self, key, value):
        # Document prose may carry boilerplate around the phrase.
        return self.text_for(key, Source.SSP) in value

    def matches_data_text(self, key, value):
        return value == self.text_for(key, Source.YAML)

    def detect_key_from_doc(self, text):
        """Classify document text, returning the no-status key when nothing matches."""
        for key in self._order:
            if self.matches_document_text(key, text):
                return key
        return self.no_status

    def key_for_data_text(self, keyword):
        """Return the key for a YAML keyword, or the no-status key if unknown."""
        return self._by_yaml.get(keyword, self.no_status)

    def ordered(self, keys):
        """Return the named keys from `keys` in precedence order."""
        wanted = set(keys)
        return [key for key in self._order if key in wanted]


ORIGINATION = Vocabulary('Control Origination', Origin.NO_ORIGIN, (
    (Origin.SERVICE_PROVIDER_CORPORATE,
     'Service Provider Corporate', 'service_provider_corporate'),
    (Origin.SERVICE_PROVIDER_SYSTEM_SPECIFIC,
     'Service Provider System Specific', 'service_provider_system_specific'),
    (Origin.SERVICE_PROVIDER_HYBRID,
     'Service Provider Hybrid', 'service_provider_hybrid'),
    (Origin.CONFIGURED_BY_CUSTOMER,
     'Configured by Customer', 'configured_by_customer'),
    (Origin.PROVIDED_BY_CUSTOMER,
     'Provided by Customer', 'provided_by_customer'),
    (Origin.SHARED, 'Shared', 'shared'),
    (Origin.INHERITED, 'Inherited', 'inherited'),
))

# The OpenControl schema has no keyword for "Alternative implementation",
# so that checkbox is never classified.
IMPLEMENTATION = Vocabulary('Implementation Status', ImplementationStatus.NO_STATUS, (
    (ImplementationStatus.IMPLEMENTED, 'Implemented', 'complete'),
    (ImplementationStatus.PARTIAL, 'Partially implemented', 'partial'),
    (ImplementationStatus.PLANNED, 'Planned', 'planned'),
    (ImplementationStatus.NOT_APPLICABLE, 'Not applicable', 'none'),
))
