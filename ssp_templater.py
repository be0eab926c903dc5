#!/usr/bin/env python3
"""
SSP Templater - Fill & Diff Tool
================================

This tool works on a FedRAMP System Security Plan (.docx) and an OpenControl
workspace and either:
  1. FILL – writes Responsible Role, Parameter, Control Origination and
             Implementation Status values from the YAML into every control
             summary table of the SSP
  2. DIFF – reports where the SSP disagrees with the YAML, without touching
             the document

A control summary table looks like this (one w:tbl per control):
  Row 0   "AC-2 (1)" | "Control Summary Information"   → control name
  Row n   "Responsible Role: ..."                        → free text
  Row n   "Parameter AC-2(1)(a): ..."                    → zero or more
  Row n   "Implementation Status (check all that apply)" → checkboxes
  Row n   "Control Origination (check all that apply)"   → checkboxes

Usage:
    python ssp_templater.py fill opencontrols/ input.docx output_filled.docx
    python ssp_templater.py diff opencontrols/ input.docx
"""

import argparse
import logging
import os
import re
import shutil
import sys
import tempfile
import zipfile
from collections import namedtuple
from lxml import etree

import opencontrols
from vocabulary import IMPLEMENTATION, ORIGINATION, Source

logger = logging.getLogger(__name__)

# ─── Namespace map ──────────────────────────────────────────────────────────
NSMAP = {
    'w':    'http://schemas.openxmlformats.org/wordprocessingml/2006/main',
    'r':    'http://schemas.openxmlformats.org/officeDocument/2006/relationships',
    'mc':   'http://schemas.openxmlformats.org/markup-compatibility/2006',
    'w14':  'http://schemas.microsoft.com/office/word/2010/wordml',
}

W = NSMAP['w']
XML_SPACE = '{http://www.w3.org/XML/1998/namespace}space'

def wn(tag):
    """Create a tag in the w: namespace."""
    return f'{{{W}}}{tag}'

def wattr(attr):
    """Create an attribute name in the w: namespace."""
    return f'{{{W}}}{attr}'

# ─── TEMPLATE CONSTANTS ─────────────────────────────────────────────────────

# Heading text that marks a table as a control summary table
SUMMARY_TABLE_HEADING = 'Control Summary Information'

# Row labels (matched against the start of the normalized cell text)
RESPONSIBLE_ROLE_FIELD      = 'Responsible Role'
PARAMETER_FIELD             = 'Parameter'
CONTROL_ORIGINATION_FIELD   = 'Control Origination'
IMPLEMENTATION_STATUS_FIELD = 'Implementation Status'

# e.g. "AC-2", "AC-2 (1)", "SC-7(12)"
CONTROL_NAME_PATTERN = re.compile(r'([A-Z]{2}-\d+(?:\s*\(\d+\))?)')
RESPONSIBLE_ROLE_PATTERN = re.compile(r'^\s*Responsible\s+Role\s*:?(.*)$', re.DOTALL)
# Greedy on the id: the split happens at the last ':' in the cell.
PARAMETER_PATTERN = re.compile(r'Parameter (.+):(.+)')

# Checkbox content control (w14:checkbox) children and values
CHECKBOX_ATTRIBUTE_KEY        = 'val'
CHECKBOX_CHECKED_VALUE        = '1'
CHECKBOX_NOT_CHECKED_VALUE    = '0'
CHECKBOX_CHECKED_CHILD        = 'checked'
CHECKBOX_CHECKED_STATE_CHILD   = 'checkedState'
CHECKBOX_UNCHECKED_STATE_CHILD = 'uncheckedState'


# ═══════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════

class TemplaterError(Exception):
    """Base class for problems found in an SSP control table."""


class AmbiguousOrMissingFieldError(TemplaterError):
    """A field that must appear exactly once was found zero or several times."""

    def __init__(self, field, found):
        self.field = field
        self.found = found
        super().__init__(
            f"Expected exactly one '{field}' cell, found {found}")


class MalformedFieldError(TemplaterError):
    """A cell's text does not follow the 'Label: value' convention."""

    def __init__(self, field, text):
        self.field = field
        self.text = text
        super().__init__(f"Unable to parse {field} cell: {text!r}")


class UnresolvableCheckboxError(TemplaterError):
    """A paragraph does not carry the expected checkbox markup."""


# ═══════════════════════════════════════════════════════════════════════════
# XML HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def search(node, query, **variables):
    """Run an XPath query with the w:/w14: prefixes bound."""
    return node.xpath(query, namespaces=NSMAP, **variables)


def find_text_nodes(node):
    """All w:t descendants of a node, in document order."""
    return search(node, './/w:t')


def concat_text_nodes(text_nodes):
    """Join the text of split runs back into the logical value."""
    return ''.join(t.text or '' for t in text_nodes)


def set_text_nodes(text_nodes, value):
    """
    Put the whole value into the first run and blank the others.
    Word splits a single visible string over several runs, so writing into
    each of them would duplicate text.
    """
    for idx, node in enumerate(text_nodes):
        if idx == 0:
            node.text = value
            node.set(XML_SPACE, 'preserve')
        else:
            node.text = ''


def _attr_key(node, local_name):
    """Find an attribute by local name, whatever its namespace."""
    for key in node.attrib:
        if etree.QName(key).localname == local_name:
            return key
    return None


def _attr_value(node, local_name):
    key = _attr_key(node, local_name)
    if key is None:
        return ''
    return node.get(key) or ''


# ═══════════════════════════════════════════════════════════════════════════
# CHECKBOX
# ═══════════════════════════════════════════════════════════════════════════

def _get_child(node, child_name):
    """Return the single descendant with the given local name."""
    if node is None:
        raise UnresolvableCheckboxError("Node provided is None")
    children = search(node, './/*[local-name()=$name]', name=child_name)
    if len(children) != 1:
        raise UnresolvableCheckboxError(
            f"Unable to find the check box child '{child_name}'")
    return children[0]


def find_checkbox_tag(paragraph):
    """
    Find the w14:checkbox element inside a paragraph.

    The structure Word writes for a checkbox content control:
    <w:sdt>
      <w:sdtPr>
        <w14:checkbox>
          <w14:checked w14:val="0|1"/>
          <w14:checkedState w14:val="2612" w14:font="MS Gothic"/>
          <w14:uncheckedState w14:val="2610" w14:font="MS Gothic"/>
        </w14:checkbox>
      </w:sdtPr>
      <w:sdtContent><w:r><w:t>☐</w:t></w:r></w:sdtContent>
    </w:sdt>
    """
    checkboxes = search(paragraph, './/*[local-name()="checkbox"]')
    if len(checkboxes) != 1:
        raise UnresolvableCheckboxError("Unable to find the check box value")
    return checkboxes[0]


class CheckBox:
    """A checkbox in the document plus the text printed next to it."""

    def __init__(self, check_mark, text_nodes):
        self.check_mark = check_mark
        self.text_nodes = text_nodes

    @classmethod
    def bind(cls, check_mark, text_nodes):
        """
        Build a CheckBox if the checked marker can actually be found.
        Returns None otherwise so the caller can skip the paragraph.
        """
        try:
            checked_node = _get_child(check_mark, CHECKBOX_CHECKED_CHILD)
        except UnresolvableCheckboxError:
            return None
        if not _attr_value(checked_node, CHECKBOX_ATTRIBUTE_KEY):
            return None
        return cls(check_mark, text_nodes)

    def is_checked(self):
        try:
            child = _get_child(self.check_mark, CHECKBOX_CHECKED_CHILD)
        except UnresolvableCheckboxError:
            return False
        return _attr_value(child, CHECKBOX_ATTRIBUTE_KEY) == CHECKBOX_CHECKED_VALUE

    def set_checked_to(self, value):
        """Set the checked marker, then swap the visible glyph to match."""
        try:
            checked_node = _get_child(self.check_mark, CHECKBOX_CHECKED_CHILD)
        except UnresolvableCheckboxError:
            return
        key = _attr_key(checked_node, CHECKBOX_ATTRIBUTE_KEY)
        if key is None:
            key = f"{{{NSMAP['w14']}}}{CHECKBOX_ATTRIBUTE_KEY}"
        checked_node.set(key, CHECKBOX_CHECKED_VALUE if value else CHECKBOX_NOT_CHECKED_VALUE)

        state_child = CHECKBOX_CHECKED_STATE_CHILD if value else CHECKBOX_UNCHECKED_STATE_CHILD
        try:
            state_node = _get_child(self.check_mark, state_child)
        except UnresolvableCheckboxError:
            return

        # w14:checkbox → w:sdtPr → w:sdt
        sdt_pr = self.check_mark.getparent()
        sdt = sdt_pr.getparent() if sdt_pr is not None else None
        if sdt is None:
            return
        glyph_nodes = search(sdt, './/w:sdtContent//w:t')
        if len(glyph_nodes) != 1:
            return

        try:
            glyph = chr(int(_attr_value(state_node, CHECKBOX_ATTRIBUTE_KEY), 16))
        except (ValueError, OverflowError):
            return
        glyph_nodes[0].text = glyph

    def get_text_value(self):
        return concat_text_nodes(self.text_nodes)

    def __repr__(self):
        return f"CheckBox({self.get_text_value()!r}, checked={self.is_checked()})"


# ═══════════════════════════════════════════════════════════════════════════
# TABLE CELL LOCATORS
# ═══════════════════════════════════════════════════════════════════════════

def find_cells(table, label):
    """Every w:tc whose whitespace-normalized text starts with `label`."""
    return search(table, './/w:tc[starts-with(normalize-space(.), $label)]', label=label)


def find_unique_cell(table, label):
    cells = find_cells(table, label)
    if len(cells) != 1:
        raise AmbiguousOrMissingFieldError(label, len(cells))
    return cells[0]


def control_name(table):
    """Read the control name (e.g. 'AC-2 (1)') from the table's heading row."""
    rows = table.findall(wn('tr'))
    if not rows:
        raise AmbiguousOrMissingFieldError('control name', 0)
    heading = ' '.join(concat_text_nodes(find_text_nodes(rows[0])).split())
    match = CONTROL_NAME_PATTERN.search(heading)
    if match is None:
        raise AmbiguousOrMissingFieldError('control name', 0)
    return match.group(1)


# ═══════════════════════════════════════════════════════════════════════════
# FIELDS
# ═══════════════════════════════════════════════════════════════════════════

class ResponsibleRole:
    """The 'Responsible Role: ...' cell."""

    def __init__(self, cell, text_nodes):
        self.cell = cell
        self.text_nodes = text_nodes

    def get_content(self):
        return concat_text_nodes(self.text_nodes)

    def get_value(self):
        """The text after the label, trimmed."""
        content = self.get_content()
        match = RESPONSIBLE_ROLE_PATTERN.match(content)
        if match is None:
            raise MalformedFieldError(RESPONSIBLE_ROLE_FIELD, content)
        return match.group(1).strip()

    def set_value(self, value):
        set_text_nodes(self.text_nodes, f"{RESPONSIBLE_ROLE_FIELD}: {value}")

    def is_default_value(self, value):
        # An empty role means "not filled in yet" rather than a disagreement.
        return value == ''


def find_responsible_role(table):
    cell = find_unique_cell(table, RESPONSIBLE_ROLE_FIELD)
    text_nodes = find_text_nodes(cell)
    if not text_nodes:
        raise AmbiguousOrMissingFieldError(RESPONSIBLE_ROLE_FIELD, 0)
    return ResponsibleRole(cell, text_nodes)


class Parameter:
    """One 'Parameter <id>: <value>' cell."""

    def __init__(self, cell, text_nodes):
        self.cell = cell
        self.text_nodes = text_nodes

    def get_content(self):
        return concat_text_nodes(self.text_nodes)

    def _match(self):
        content = self.get_content()
        match = PARAMETER_PATTERN.search(content)
        if match is None:
            raise MalformedFieldError(PARAMETER_FIELD, content)
        return match

    def get_id(self):
        """The text between 'Parameter' and the last ':', without spaces."""
        return self._match().group(1).replace(' ', '').strip()

    def get_value(self):
        return self._match().group(2).strip()

    def set_value(self, value):
        param_id = self.get_id()
        set_text_nodes(self.text_nodes, f"{PARAMETER_FIELD} {param_id}: {value}")

    def is_default_value(self, value):
        return value == ''

    def __repr__(self):
        return f"Parameter({self.get_content()!r})"


def find_parameters(table):
    """Zero or more Parameter cells, in document order."""
    parameters = []
    for cell in find_cells(table, PARAMETER_FIELD):
        text_nodes = find_text_nodes(cell)
        if not text_nodes:
            raise MalformedFieldError(PARAMETER_FIELD, '')
        parameters.append(Parameter(cell, text_nodes))
    logger.debug("Found %d parameter cell(s)", len(parameters))
    return parameters


class CheckBoxSection:
    """
    The checkboxes under a 'Control Origination' or 'Implementation Status'
    row, indexed by vocabulary key.
    """

    def __init__(self, cell, vocabulary, boxes):
        self.cell = cell
        self.vocabulary = vocabulary
        self.boxes = boxes   # key → CheckBox, first occurrence wins

    @classmethod
    def locate(cls, table, label, vocabulary):
        cell = find_unique_cell(table, label)
        boxes = {}
        # Each checkbox lives in its own paragraph.
        for paragraph in search(cell, './/w:p'):
            try:
                check_mark = find_checkbox_tag(paragraph)
            except UnresolvableCheckboxError:
                continue

            text_nodes = find_text_nodes(paragraph)
            if not text_nodes:
                continue

            key = vocabulary.detect_key_from_doc(concat_text_nodes(text_nodes))
            if key == vocabulary.no_status:
                logger.debug("Skipping unrecognised %s checkbox: %r",
                             label, concat_text_nodes(text_nodes))
                continue
            if key in boxes:
                continue

            checkbox = CheckBox.bind(check_mark, text_nodes)
            if checkbox is None:
                continue
            boxes[key] = checkbox
        return cls(cell, vocabulary, boxes)

    def get_checked(self):
        """The keys whose checkbox is currently checked."""
        return {key for key, box in self.boxes.items() if box.is_checked()}

    def set_checked(self, keys):
        """
        Check the boxes for `keys`. Boxes outside `keys` are left alone, so
        filling never clears a check that is already in the document.
        """
        for key in self.vocabulary.ordered(keys):
            box = self.boxes.get(key)
            if box is None:
                logger.warning("No '%s' checkbox for %s in the document",
                               self.vocabulary.text_for(key, Source.SSP),
                               self.vocabulary.name)
                continue
            box.set_checked_to(True)


# ═══════════════════════════════════════════════════════════════════════════
# DIFF REPORTS
# ═══════════════════════════════════════════════════════════════════════════

FieldValue = namedtuple('FieldValue', ['source', 'text'])


class DiffReport(namedtuple('DiffReport', ['control', 'field', 'first', 'second'])):
    """One disagreement between the SSP and the YAML for a control field."""
    __slots__ = ()

    def __str__(self):
        return (f'Control: {self.control}. '
                f'{self.field} in {self.first.source}: "{self.first.text}". '
                f'{self.field} in {self.second.source}: "{self.second.text}".\n')

    def write_text_to(self, stream):
        stream.write(str(self))


def write_diff_report(reports, stream):
    """Write every report's text to a stream."""
    for report in reports:
        report.write_text_to(stream)


# ═══════════════════════════════════════════════════════════════════════════
# SUMMARY TABLE
# ═══════════════════════════════════════════════════════════════════════════

class SummaryTable:
    """
    The summary information table for one control. Building it binds every
    field; a missing or duplicated row raises AmbiguousOrMissingFieldError.
    """

    def __init__(self, root):
        self.root = root
        self.responsible_role = find_responsible_role(root)
        self.parameters = find_parameters(root)
        self.origin_table = CheckBoxSection.locate(
            root, CONTROL_ORIGINATION_FIELD, ORIGINATION)
        self.implementation_table = CheckBoxSection.locate(
            root, IMPLEMENTATION_STATUS_FIELD, IMPLEMENTATION)

    def control_name(self):
        return control_name(self.root)

    # ── Fill ──

    def fill(self, data):
        """
        Copy the OpenControl values into the table. This modifies the document.
        The first failing field stops the fill; earlier fields stay written.
        """
        control = self.control_name()
        logger.info("Filling control %s", control)
        self._fill_responsible_role(data, control)
        self._fill_parameters(data, control)
        self._fill_control_origination(data, control)
        self._fill_implementation_status(data, control)

    def _fill_responsible_role(self, data, control):
        self.responsible_role.set_value(data.get_responsible_roles(control))

    def _fill_parameters(self, data, control):
        for parameter in self.parameters:
            value = data.get_parameter(control, parameter.get_id())
            parameter.set_value(value)

    def _fill_control_origination(self, data, control):
        origins = data.get_control_origins(control).get_checked_origins()
        self.origin_table.set_checked(origins)

    def _fill_implementation_status(self, data, control):
        statuses = data.get_implementation_statuses(control).get_checked_implementation_statuses()
        self.implementation_table.set_checked(statuses)

    # ── Diff ──

    def diff(self, data):
        """Return the DiffReports for this control. Never modifies the document."""
        control = self.control_name()
        reports = []
        reports.extend(self.diff_responsible_role(control, data))
        reports.extend(self.diff_control_origination(control, data))
        return reports

    def diff_responsible_role(self, control, data):
        ssp_field = FieldValue(Source.SSP, self.responsible_role.get_value())
        yaml_field = FieldValue(Source.YAML, data.get_responsible_roles(control))
        if self.responsible_role.is_default_value(ssp_field.text) or ssp_field.text == yaml_field.text:
            return []
        return [DiffReport(control, RESPONSIBLE_ROLE_FIELD, ssp_field, yaml_field)]

    def diff_control_origination(self, control, data):
        doc_origins = self.origin_table.get_checked()
        yaml_origins = data.get_control_origins(control).get_checked_origins()

        reports = []
        # Only in the document, then only in the YAML.
        reports.extend(self._origin_reports(control, doc_origins - yaml_origins, Source.SSP))
        reports.extend(self._origin_reports(control, yaml_origins - doc_origins, Source.YAML))
        return reports

    def _origin_reports(self, control, origins, source):
        other = Source.YAML if source == Source.SSP else Source.SSP
        reports = []
        for origin in ORIGINATION.ordered(origins):
            first = FieldValue(source, ORIGINATION.text_for(origin, source))
            reports.append(DiffReport(control, CONTROL_ORIGINATION_FIELD,
                                      first, FieldValue(other, '')))
        return reports


# ═══════════════════════════════════════════════════════════════════════════
# SSP DOCUMENT
# ═══════════════════════════════════════════════════════════════════════════

class SSP:
    """
    An SSP unpacked into a temporary directory with word/document.xml parsed.
    Close it (or use it as a context manager) to remove the directory.
    """

    def __init__(self, path, tmp_dir, tree):
        self.path = path
        self.tmp_dir = tmp_dir
        self.tree = tree
        self.root = tree.getroot()

    @classmethod
    def load(cls, path):
        if not os.path.exists(path):
            raise FileNotFoundError(f"SSP not found: {path}")

        tmp_dir = tempfile.mkdtemp()
        try:
            try:
                with zipfile.ZipFile(path, 'r') as z:
                    z.extractall(tmp_dir)
            except zipfile.BadZipFile as exc:
                raise ValueError(f"{path} is not a .docx file") from exc

            doc_xml_path = os.path.join(tmp_dir, 'word', 'document.xml')
            if not os.path.exists(doc_xml_path):
                raise ValueError(f"{path} has no word/document.xml")
            tree = etree.parse(doc_xml_path)
        except Exception:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise

        logger.info("Loaded SSP: %s", path)
        return cls(path, tmp_dir, tree)

    @property
    def document_xml_path(self):
        return os.path.join(self.tmp_dir, 'word', 'document.xml')

    def summary_tables(self):
        """Every w:tbl whose first row contains the summary heading."""
        return search(self.root, '//w:tbl[w:tr[1][contains(normalize-space(.), $heading)]]',
                      heading=SUMMARY_TABLE_HEADING)

    def content(self):
        """All document text, runs joined."""
        return concat_text_nodes(find_text_nodes(self.root))

    def save(self, output_path):
        self.tree.write(self.document_xml_path, xml_declaration=True, encoding='UTF-8',
                        standalone=True)
        _repack_docx(self.tmp_dir, output_path)
        logger.info("Saved SSP to: %s", output_path)

    def close(self):
        if self.tmp_dir:
            shutil.rmtree(self.tmp_dir, ignore_errors=True)
            self.tmp_dir = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


# ═══════════════════════════════════════════════════════════════════════════
# FILL / DIFF over the whole SSP
# ═══════════════════════════════════════════════════════════════════════════

def fill_ssp(ssp, data):
    """Fill every control summary table. Stops at the first failing control."""
    tables = ssp.summary_tables()
    logger.info("Filling %d control table(s)", len(tables))
    for root in tables:
        SummaryTable(root).fill(data)


def diff_ssp(ssp, data):
    """Collect the DiffReports of every control summary table, in document order."""
    reports = []
    seen = set()
    for root in ssp.summary_tables():
        table = SummaryTable(root)
        seen.add(table.control_name())
        reports.extend(table.diff(data))
    missing = [control for control in data.controls() if control not in seen]
    if missing:
        logger.warning("Controls in the workspace but not in the SSP: %s", ", ".join(missing))
    logger.info("Found %d difference(s)", len(reports))
    return reports


# ═══════════════════════════════════════════════════════════════════════════
# UTILITIES
# ═══════════════════════════════════════════════════════════════════════════

def _repack_docx(unpacked_dir, output_path):
    """Repack an unpacked directory into a .docx file."""
    if os.path.exists(output_path):
        os.remove(output_path)

    with zipfile.ZipFile(output_path, 'w', zipfile.ZIP_DEFLATED) as zf:
        for root_dir, dirs, files in os.walk(unpacked_dir):
            for f in files:
                file_path = os.path.join(root_dir, f)
                arcname = os.path.relpath(file_path, unpacked_dir)
                zf.write(file_path, arcname)


# ═══════════════════════════════════════════════════════════════════════════
# CLI ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='SSP Templater — fill and diff SSP control tables from OpenControl data',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python ssp_templater.py fill opencontrols/ ssp.docx ssp_filled.docx
  python ssp_templater.py diff opencontrols/ ssp.docx
        """
    )
    parser.add_argument('mode', choices=['fill', 'diff'],
                        help='Operation mode: fill or diff')
    parser.add_argument('opencontrols', help='Path to the OpenControl workspace')
    parser.add_argument('input', help='Path to the input SSP .docx file')
    parser.add_argument('output', nargs='?', default=None,
                        help='(fill only) Path to the output .docx file')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Log per-control progress')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    if args.mode == 'fill' and not args.output:
        parser.error('fill requires an output path')

    if not os.path.exists(args.input):
        print(f"Error: Input file not found: {args.input}")
        sys.exit(1)

    try:
        data = opencontrols.load_from(args.opencontrols)
    except opencontrols.OpenControlError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    try:
        with SSP.load(args.input) as ssp:
            if args.mode == 'fill':
                print(f"📝 Filling: {args.input}")
                fill_ssp(ssp, data)
                ssp.save(args.output)
                print(f"📄 Filled SSP saved to: {args.output}")

            elif args.mode == 'diff':
                print(f"🔍 Diffing: {args.input}")
                reports = diff_ssp(ssp, data)
                if reports:
                    write_diff_report(reports, sys.stdout)
                else:
                    print("✅ No differences found.")
    except (TemplaterError, ValueError, OSError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)


if __name__ == '__main__':
    main()
