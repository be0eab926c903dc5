import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from tests.ssp_samples import EC2_COMPONENT, make_document, make_summary_table, write_component, write_docx


@pytest.fixture
def summary_table():
    """A lone AC-2 (1) summary table with the placeholder role and one parameter."""
    return make_summary_table(
        parameters=[('Parameter AC-2(1)(a):', ' ', 'old value')],
    )


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / 'opencontrols'
    write_component(str(root), 'EC2', EC2_COMPONENT)
    return root


@pytest.fixture
def ssp_path(tmp_path):
    document = make_document(make_summary_table(
        parameters=[('Parameter AC-2(1)(a):', ' ', 'old value')],
    ))
    return write_docx(str(tmp_path / 'ssp.docx'), document)
