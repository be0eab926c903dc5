import io
import zipfile

import pytest

import ssp_templater
from opencontrols import load_from
from ssp_templater import (
    SSP,
    AmbiguousOrMissingFieldError,
    diff_ssp,
    fill_ssp,
    write_diff_report,
)
from tests.ssp_samples import (
    CHECKED_GLYPH,
    make_document,
    make_summary_table,
    make_text_paragraph,
    read_document_xml,
    write_docx,
)
from vocabulary import Origin

EXPECTED_DIFF = ('Control: AC-2 (1). '
                 'Responsible Role in SSP: "OpenControl Role Placeholder". '
                 'Responsible Role in YAML: "Amazon Elastic Compute Cloud: AWS Staff".\n')


def _report_text(reports):
    stream = io.StringIO()
    write_diff_report(reports, stream)
    return stream.getvalue()


# ─── SSP document ──

def test_load_finds_summary_tables(ssp_path):
    with SSP.load(ssp_path) as ssp:
        assert len(ssp.summary_tables()) == 1
        assert 'OpenControl Role Placeholder' in ssp.content()


def test_other_tables_are_not_summary_tables(tmp_path):
    from lxml import etree
    from ssp_templater import wn

    other = etree.Element(wn('tbl'))
    row = etree.SubElement(other, wn('tr'))
    cell = etree.SubElement(row, wn('tc'))
    cell.append(make_text_paragraph('Responsible Role: someone'))
    path = write_docx(str(tmp_path / 'ssp.docx'), make_document(other, make_summary_table()))

    with SSP.load(path) as ssp:
        assert len(ssp.summary_tables()) == 1


def test_close_removes_temporary_directory(ssp_path):
    import os

    ssp = SSP.load(ssp_path)
    tmp_dir = ssp.tmp_dir
    assert os.path.isdir(tmp_dir)
    ssp.close()
    assert not os.path.exists(tmp_dir)


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        SSP.load(str(tmp_path / 'missing.docx'))


def test_load_rejects_non_docx(tmp_path):
    path = tmp_path / 'not.docx'
    path.write_text('plain text', encoding='utf-8')
    with pytest.raises(ValueError):
        SSP.load(str(path))


def test_load_rejects_zip_without_document(tmp_path):
    path = tmp_path / 'empty.docx'
    with zipfile.ZipFile(path, 'w') as zf:
        zf.writestr('word/styles.xml', '<styles/>')
    with pytest.raises(ValueError):
        SSP.load(str(path))


# ─── End to end ──

def test_fill_ssp_fills_responsible_role(ssp_path, workspace, tmp_path):
    data = load_from(str(workspace))
    output = str(tmp_path / 'filled.docx')

    with SSP.load(ssp_path) as ssp:
        fill_ssp(ssp, data)
        assert 'Responsible Role: Amazon Elastic Compute Cloud: AWS Staff' in ssp.content()
        ssp.save(output)

    with SSP.load(output) as filled:
        content = filled.content()
        assert 'Responsible Role: Amazon Elastic Compute Cloud: AWS Staff' in content
        assert 'Parameter AC-2(1)(a): 90 days' in content
        assert CHECKED_GLYPH + ' Shared' in content
        assert CHECKED_GLYPH + ' Partially implemented' in content
    # The repacked file keeps its other parts.
    with zipfile.ZipFile(output) as zf:
        assert '[Content_Types].xml' in zf.namelist()


def test_diff_ssp_reports_responsible_role(ssp_path, workspace):
    data = load_from(str(workspace))
    with SSP.load(ssp_path) as ssp:
        reports = diff_ssp(ssp, data)
    # The YAML also marks the control as shared, which the SSP does not show.
    assert _report_text(reports[:1]) == EXPECTED_DIFF
    assert [r.first.text for r in reports[1:]] == ['shared']


def test_diff_after_fill_is_clean(ssp_path, workspace):
    data = load_from(str(workspace))
    with SSP.load(ssp_path) as ssp:
        fill_ssp(ssp, data)
        assert diff_ssp(ssp, data) == []


def test_diff_only_responsible_role(tmp_path, workspace):
    path = write_docx(str(tmp_path / 'ssp.docx'), make_document(
        make_summary_table(origins_checked=('Shared (Service Provider and Customer Responsibility)',))))
    with SSP.load(path) as ssp:
        assert _report_text(diff_ssp(ssp, load_from(str(workspace)))) == EXPECTED_DIFF


def test_fill_ssp_stops_at_broken_table(tmp_path, workspace):
    path = write_docx(str(tmp_path / 'ssp.docx'), make_document(
        make_summary_table(role_runs=None)))
    with SSP.load(path) as ssp:
        with pytest.raises(AmbiguousOrMissingFieldError):
            fill_ssp(ssp, load_from(str(workspace)))


def test_fill_ssp_handles_several_controls(tmp_path, workspace):
    path = write_docx(str(tmp_path / 'ssp.docx'), make_document(
        make_summary_table(control='AC-2 (1)'),
        make_summary_table(control='AC-3'),
    ))
    with SSP.load(path) as ssp:
        fill_ssp(ssp, load_from(str(workspace)))
        ssp.save(str(tmp_path / 'out.docx'))

    document = read_document_xml(str(tmp_path / 'out.docx'))
    text = ''.join(document.itertext())
    assert 'Responsible Role: Amazon Elastic Compute Cloud: AWS Staff' in text
    # AC-3 is not in the workspace, so its role is emptied.
    assert 'Responsible Role: OpenControl' not in text


# ─── CLI ──

def test_cli_diff(ssp_path, workspace, capsys):
    ssp_templater.main(['diff', str(workspace), ssp_path])
    out = capsys.readouterr().out
    assert EXPECTED_DIFF in out


def test_cli_fill(ssp_path, workspace, tmp_path, capsys):
    output = str(tmp_path / 'filled.docx')
    ssp_templater.main(['fill', str(workspace), ssp_path, output])
    with SSP.load(output) as filled:
        assert 'Responsible Role: Amazon Elastic Compute Cloud: AWS Staff' in filled.content()


def test_cli_fill_requires_output(ssp_path, workspace):
    with pytest.raises(SystemExit):
        ssp_templater.main(['fill', str(workspace), ssp_path])


def test_cli_missing_input(workspace, tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        ssp_templater.main(['diff', str(workspace), str(tmp_path / 'missing.docx')])
    assert excinfo.value.code == 1
    assert 'Input file not found' in capsys.readouterr().out


def test_cli_bad_workspace(ssp_path, tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        ssp_templater.main(['diff', str(tmp_path / 'nowhere'), ssp_path])
    assert excinfo.value.code == 1
    assert 'No components directory' in capsys.readouterr().out


def test_cli_reports_broken_table(tmp_path, workspace, capsys):
    path = write_docx(str(tmp_path / 'ssp.docx'), make_document(
        make_summary_table(origination_labels=None)))
    with pytest.raises(SystemExit):
        ssp_templater.main(['diff', str(workspace), path])
    assert "Control Origination" in capsys.readouterr().out


def test_origin_constant_is_shared_with_loader(workspace):
    # The loader and the templater use the same key objects.
    data = load_from(str(workspace))
    assert Origin.SHARED in data.get_control_origins('AC-2 (1)').get_checked_origins()


def test_diff_ssp_warns_about_controls_missing_from_ssp(tmp_path, workspace, caplog):
    path = write_docx(str(tmp_path / 'ssp.docx'), make_document(make_summary_table(control='AC-3')))
    with SSP.load(path) as ssp:
        with caplog.at_level('WARNING', logger='ssp_templater'):
            diff_ssp(ssp, load_from(str(workspace)))
    assert 'Controls in the workspace but not in the SSP: AC-2 (1)' in caplog.text


def test_cli_fill_into_missing_directory(ssp_path, workspace, tmp_path, capsys):
    output = str(tmp_path / 'no' / 'such' / 'dir' / 'filled.docx')
    with pytest.raises(SystemExit) as excinfo:
        ssp_templater.main(['fill', str(workspace), ssp_path, output])
    assert excinfo.value.code == 1
    assert 'Error:' in capsys.readouterr().out
