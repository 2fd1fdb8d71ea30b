"""
Tests for dynamic form schemas and submission validation
"""

import pytest
from datetime import date, datetime

from process_flow.errors import ValidationError
from process_flow.forms import FieldSpec, FieldType, check_field_specs, validate_form_data


@pytest.fixture
def expense_fields():
    """Fields of an expense request step"""
    return [
        FieldSpec(id="valor", type=FieldType.NUMBER, label="Valor", required=True),
        FieldSpec(id="data", type=FieldType.DATE, label="Data da despesa", required=True),
        FieldSpec(id="descricao", type=FieldType.TEXTAREA, label="Descrição"),
        FieldSpec(id="categoria", type=FieldType.SELECT, label="Categoria", required=True,
                  options=["Viagem", "Material", "Outros"]),
        FieldSpec(id="urgente", type=FieldType.CHECKBOX, label="Urgente"),
    ]


class TestFieldSpec:
    """Field definitions"""

    def test_from_dict_defaults_to_text(self):
        spec = FieldSpec.from_dict({"id": "nome", "label": "Nome"})
        assert spec.type == FieldType.TEXT
        assert spec.required is False

    def test_from_dict_unknown_type(self):
        with pytest.raises(ValidationError) as exc_info:
            FieldSpec.from_dict({"id": "x", "label": "X", "type": "color"})
        assert "color" in exc_info.value.message

    def test_options_only_serialized_for_select(self):
        select = FieldSpec(id="s", type=FieldType.SELECT, label="S", options=["a", "b"])
        text = FieldSpec(id="t", type=FieldType.TEXT, label="T", options=["ignored"])
        assert select.to_dict()["options"] == ["a", "b"]
        assert "options" not in text.to_dict()


class TestCheckFieldSpecs:
    """Schema-level validation of a step's fields"""

    def test_valid_schema(self, expense_fields):
        assert check_field_specs(expense_fields) == []

    def test_select_without_options(self):
        errors = check_field_specs([FieldSpec(id="s", type=FieldType.SELECT, label="Tipo")])
        assert len(errors) == 1
        assert "Tipo" in errors[0]

    def test_duplicate_ids_and_missing_label(self):
        fields = [
            FieldSpec(id="a", type=FieldType.TEXT, label="A"),
            FieldSpec(id="a", type=FieldType.TEXT, label=""),
        ]
        errors = check_field_specs(fields, context="etapa 1")
        assert len(errors) == 2
        assert all(e.startswith("etapa 1: ") for e in errors)

    def test_empty_id(self):
        errors = check_field_specs([FieldSpec(id=" ", type=FieldType.TEXT, label="Nome")])
        assert errors == ["campo 1 sem identificador"]


class TestValidateFormData:
    """Submissions checked against a schema"""

    def test_valid_submission(self, expense_fields):
        result = validate_form_data(expense_fields, {
            "valor": 1500.5,
            "data": "2024-03-10",
            "descricao": "Passagem aérea",
            "categoria": "Viagem",
            "urgente": True
        })
        assert result == {
            "valor": 1500.5,
            "data": "2024-03-10",
            "descricao": "Passagem aérea",
            "categoria": "Viagem",
            "urgente": True
        }

    def test_missing_required_fields_are_all_reported(self, expense_fields):
        with pytest.raises(ValidationError) as exc_info:
            validate_form_data(expense_fields, {"descricao": "sem valor"})

        errors = exc_info.value.errors
        assert "Valor: campo obrigatório" in errors
        assert "Data da despesa: campo obrigatório" in errors
        assert "Categoria: campo obrigatório" in errors
        assert len(errors) == 3

    def test_whitespace_counts_as_empty(self, expense_fields):
        with pytest.raises(ValidationError) as exc_info:
            validate_form_data(expense_fields, {
                "valor": "   ", "data": "2024-03-10", "categoria": "Viagem"
            })
        assert exc_info.value.errors == ["Valor: campo obrigatório"]

    def test_checkbox_defaults_to_false_even_when_required(self):
        fields = [FieldSpec(id="ok", type=FieldType.CHECKBOX, label="Conferido", required=True)]
        assert validate_form_data(fields, {}) == {"ok": False}

    @pytest.mark.parametrize("raw, expected", [
        ("true", True), ("on", True), ("false", False), (0, False), (1, True),
    ])
    def test_checkbox_string_values(self, raw, expected):
        fields = [FieldSpec(id="ok", type=FieldType.CHECKBOX, label="Conferido")]
        assert validate_form_data(fields, {"ok": raw}) == {"ok": expected}

    @pytest.mark.parametrize("raw, expected", [
        (10, 10), ("10", 10), ("10.5", 10.5), ("1500,50", 1500.5), (2.25, 2.25),
    ])
    def test_number_coercion(self, raw, expected):
        fields = [FieldSpec(id="n", type=FieldType.NUMBER, label="Número", required=True)]
        assert validate_form_data(fields, {"n": raw}) == {"n": expected}

    @pytest.mark.parametrize("raw", ["abc", True, "nan", [1]])
    def test_number_rejects_non_numeric(self, raw):
        fields = [FieldSpec(id="n", type=FieldType.NUMBER, label="Número", required=True)]
        with pytest.raises(ValidationError) as exc_info:
            validate_form_data(fields, {"n": raw})
        assert exc_info.value.errors[0].startswith("Número: deve ser um número")

    def test_date_accepts_iso_strings_and_date_objects(self):
        fields = [FieldSpec(id="d", type=FieldType.DATE, label="Data", required=True)]
        assert validate_form_data(fields, {"d": "2024-01-31"}) == {"d": "2024-01-31"}
        assert validate_form_data(fields, {"d": date(2024, 1, 31)}) == {"d": "2024-01-31"}
        assert validate_form_data(fields, {"d": datetime(2024, 1, 31, 10, 0)}) == {"d": "2024-01-31"}

    @pytest.mark.parametrize("raw", ["31/01/2024", "2024-02-30", 20240131])
    def test_date_rejects_other_formats(self, raw):
        fields = [FieldSpec(id="d", type=FieldType.DATE, label="Data", required=True)]
        with pytest.raises(ValidationError):
            validate_form_data(fields, {"d": raw})

    def test_select_must_match_an_option(self, expense_fields):
        with pytest.raises(ValidationError) as exc_info:
            validate_form_data(expense_fields, {
                "valor": 10, "data": "2024-03-10", "categoria": "Alimentação"
            })
        assert exc_info.value.errors[0].startswith("Categoria: deve ser uma das opções")

    def test_optional_empty_fields_keep_submitted_value(self, expense_fields):
        result = validate_form_data(expense_fields, {
            "valor": 10, "data": "2024-03-10", "categoria": "Outros", "descricao": ""
        })
        assert result["descricao"] == ""

        result = validate_form_data(expense_fields, {
            "valor": 10, "data": "2024-03-10", "categoria": "Outros"
        })
        assert result["descricao"] is None
        assert result["urgente"] is False

    def test_unknown_keys_are_dropped(self, expense_fields):
        result = validate_form_data(expense_fields, {
            "valor": 10, "data": "2024-03-10", "categoria": "Outros", "extra": "x"
        })
        assert "extra" not in result

    def test_text_rejects_structures(self):
        fields = [FieldSpec(id="t", type=FieldType.TEXT, label="Texto")]
        with pytest.raises(ValidationError):
            validate_form_data(fields, {"t": {"nested": True}})

    def test_form_data_must_be_a_mapping(self, expense_fields):
        with pytest.raises(ValidationError):
            validate_form_data(expense_fields, ["not", "a", "dict"])

    def test_empty_schema_accepts_anything(self):
        assert validate_form_data([], {"anything": 1}) == {}
        assert validate_form_data([], None) == {}
