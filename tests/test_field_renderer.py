"""
Field renderer tests

Rendering is pure, so these run without a database.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mutum.models import FieldSchema, FieldType
from mutum.services import ValidationError, get_form_schema
from mutum.services.field_renderer import (
    SLIDER_DEFAULT,
    UploadTracker,
    coerce_value,
    display_value,
    render,
    render_section,
    toggle_choice,
)
from mutum.services.form_content import FieldPath


@pytest.fixture
def schema():
    return get_form_schema()


def test_schema_loads_four_sections(schema):
    assert schema.section_count == 4
    assert schema.find_field("endereco_residencia").type == FieldType.TEXTAREA
    assert schema.find_field("bateria_fisica").options[0].detail == "Trabalho físico intenso"


def test_render_is_deterministic(schema):
    section = schema.sections[0]
    content = {"nome_civil": "Ana", "contatos": {"whatsapp": "123"}}
    first = render_section(section.fields, content, True)
    second = render_section(section.fields, content, True)
    assert [c.model_dump() for c in first] == [c.model_dump() for c in second]


def test_read_only_disables_but_keeps_controls(schema):
    controls = render_section(schema.sections[0].fields, {}, False)
    assert len(controls) == len(schema.sections[0].fields)
    assert all(c.disabled for c in controls)


def test_group_children_read_from_group(schema):
    control = render(schema.find_field("contatos"), {"contatos": {"telefone": "555"}}, True)
    telefone = next(c for c in control.children if c.key == "telefone")
    assert telefone.value == "555"
    assert telefone.path == ["contatos", "telefone"]


def test_repeater_synthesizes_one_item(schema):
    control = render(schema.find_field("emergencia"), {}, True)
    assert len(control.items) == 1
    assert control.items[0][0].path == ["emergencia", 0, "nome_contato"]
    assert control.can_add
    assert not control.can_remove
    assert (control.min_value, control.max_value) == (1, 2)


def test_repeater_at_max_cannot_add(schema):
    control = render(schema.find_field("emergencia"), {"emergencia": [{}, {"nome_contato": "Rui"}]}, True)
    assert not control.can_add
    assert control.can_remove
    assert control.items[1][0].value == "Rui"


def test_section_title_has_no_value_path(schema):
    control = render(schema.find_field("title_emergencia"), {}, True)
    assert control.path == []
    assert control.value is None


def test_unknown_values_render_empty(schema):
    assert display_value(schema.find_field("tamanho_roupa"), "XXXL") == ""
    assert display_value(schema.find_field("status_vinculo"), "other") == ""
    assert display_value(schema.find_field("squads_interesse"), "bad") == []
    assert display_value(schema.find_field("cor_favorita"), "red") == ""
    assert display_value(schema.find_field("nome_civil"), None) == ""


def test_slider_defaults_and_clamps(schema):
    slider = schema.find_field("lideranca_vs_apoio")
    assert display_value(slider, None) == SLIDER_DEFAULT
    assert display_value(slider, 180) == 100
    control = render(slider, {}, True)
    assert (control.min_value, control.max_value) == (0, 100)
    assert control.extra["min_label"] == "Prefiro Receber Instruções"


def test_busy_upload_disables_only_that_field(schema):
    uploads = UploadTracker()
    uploads.begin(FieldPath("profile_photo"))
    controls = render_section(schema.sections[0].fields, {}, True, uploads)

    photo = next(c for c in controls if c.key == "profile_photo")
    name = next(c for c in controls if c.key == "nome_civil")
    assert photo.busy and photo.disabled
    assert not name.disabled

    with pytest.raises(ValidationError):
        uploads.begin(FieldPath("profile_photo"))
    uploads.finish(FieldPath("profile_photo"))
    assert uploads.active == 0


def test_coerce_rejects_bad_values(schema):
    with pytest.raises(ValidationError):
        coerce_value(schema.find_field("altura"), "tall")
    with pytest.raises(ValidationError):
        coerce_value(schema.find_field("data_nascimento"), "31/12/1990")
    with pytest.raises(ValidationError):
        coerce_value(schema.find_field("tamanho_roupa"), "XXXL")
    with pytest.raises(ValidationError):
        coerce_value(schema.find_field("squads_interesse"), ["Nope"])
    with pytest.raises(ValidationError):
        coerce_value(schema.find_field("title_emergencia"), "x")


def test_coerce_accepts_and_normalises(schema):
    assert coerce_value(schema.find_field("altura"), "172,5") == 172.5
    assert coerce_value(schema.find_field("data_nascimento"), "1990-12-31") == "1990-12-31"
    assert coerce_value(schema.find_field("lideranca_vs_apoio"), 140) == 100
    assert coerce_value(schema.find_field("squads_interesse"), ["Espaço de Cura", "Espaço de Cura"]) == [
        "Espaço de Cura"
    ]
    # allow_custom accepts labels outside the option list
    assert coerce_value(schema.find_field("como_nipeihu_ajuda"), ["Algo novo"]) == ["Algo novo"]


def test_toggle_choice():
    assert toggle_choice(None, "A") == ["A"]
    assert toggle_choice(["A", "B"], "A") == ["B"]
    assert toggle_choice(["B"], "A") == ["B", "A"]


def test_nested_containers_rejected():
    with pytest.raises(ValueError):
        FieldSchema(
            key="outer",
            type="group",
            fields=[{"key": "inner", "type": "repeater", "fields": [{"key": "a", "type": "text"}]}],
        )


@pytest.mark.parametrize("raw", ["nan", "inf", "-Infinity", float("nan"), float("inf")])
def test_non_finite_numbers_rejected(schema, raw):
    with pytest.raises(ValidationError):
        coerce_value(schema.find_field("altura"), raw)
    with pytest.raises(ValidationError):
        coerce_value(schema.find_field("lideranca_vs_apoio"), raw)


def test_non_finite_stored_numbers_display_as_defaults(schema):
    assert display_value(schema.find_field("lideranca_vs_apoio"), float("nan")) == SLIDER_DEFAULT
    assert display_value(schema.find_field("lideranca_vs_apoio"), float("inf")) == SLIDER_DEFAULT
    assert display_value(schema.find_field("altura"), float("nan")) == ""


def test_group_values_coerce_nested_fields(schema):
    group = schema.find_field("biometria_saude")
    assert coerce_value(group, {"altura": "172,5", "extra": "kept"}) == {"altura": 172.5, "extra": "kept"}
    with pytest.raises(ValidationError):
        coerce_value(group, {"altura": "nan"})
