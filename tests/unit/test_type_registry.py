"""Tests for the type registry: builtins, canonical names, templates, structs and literal formatting."""

import math

import pytest

from symbolic.errors import UnknownTypeError
from symbolic.type_registry import PrimitiveType, StructType, TemplateType, TypeRegistry


def _make_types_with_vec() -> TypeRegistry:
    types = TypeRegistry()
    types.struct("Vec", [("x", "double"), ("y", "double")], includes=['#include "vec.h"'])
    return types


class TestBuiltins:
    def test_aliases_share_one_type_object(self):
        types = TypeRegistry()
        assert types.get_type("R") is types.get_type("double")
        assert types.get_type("int") is types.get_type("S32")
        assert types.get_type("u_int") is types.get_type("U32")

    def test_unknown_type_is_none_from_get_type(self):
        assert TypeRegistry().get_type("Quaternion") is None

    def test_require_type_raises_for_unknown(self):
        with pytest.raises(UnknownTypeError, match="Unknown type Quaternion"):
            TypeRegistry().require_type("Quaternion")

    def test_double_coerces_ints_to_float(self):
        double = TypeRegistry().get_type("double")
        assert isinstance(double, PrimitiveType)
        assert double.coerce_value(2) == 2.0
        assert isinstance(double.coerce_value(2), float)


class TestCanonicalNames:
    @pytest.mark.parametrize(
        "name",
        ["vector<double>", "vector< double>", "map< int,double >"],
    )
    def test_non_canonical_spacing_rejected(self, name):
        with pytest.raises(UnknownTypeError, match="canonical"):
            TypeRegistry().get_type(name)

    def test_canonical_template_created_on_demand(self):
        types = TypeRegistry()
        t = types.get_type("vector< double >", create=True)
        assert isinstance(t, TemplateType)
        assert types.get_type("vector< double >") is t


class TestTemplates:
    def test_fixed_size_armadillo_column(self):
        types = TypeRegistry()
        t = types.template("arma::Col< double >::fixed< 3 >")
        assert t.template_name == "arma::Col::fixed"
        assert t.size == 3
        assert t.is_indexable
        assert t.element_type is types.get_type("double")

    def test_fixed_matrix_shape(self):
        t = TypeRegistry().template("arma::Mat< double >::fixed< 2, 3 >")
        assert t.template_name == "arma::Mat::fixed"
        assert (t.rows, t.size) == (2, 6)
        assert t.is_matrix
        assert t.linear_index(1, 2) == 5

    def test_column_is_not_a_matrix(self):
        assert not TypeRegistry().template("arma::Col< double >::fixed< 3 >").is_matrix

    def test_list_values_coerced_per_element(self):
        t = TypeRegistry().template("vector< double >")
        assert t.coerce_value((1, 2)) == [1.0, 2.0]
        assert all(isinstance(v, float) for v in t.coerce_value([1, 2]))

    def test_nested_template_arguments(self):
        types = TypeRegistry()
        t = types.template("vector< vector< double > >")
        inner = t.template_args[0]
        assert inner.typename == "vector< double >"
        assert inner.element_type is types.get_type("double")

    def test_unknown_template_is_not_indexable(self):
        t = TypeRegistry().template("shared_ptr< double >")
        assert not t.is_indexable
        assert t.element_type is None

    def test_zero_list_is_zero(self):
        t = TypeRegistry().template("vector< double >")
        assert t.is_zero_value([0, 0.0])
        assert not t.is_zero_value([0, 1])

    def test_js_literal(self):
        t = TypeRegistry().template("vector< double >")
        assert t.format_value("js", [1, 2]) == "Float64Array.of(1.0, 2.0)"

    def test_c_literal(self):
        t = TypeRegistry().template("vector< double >")
        assert t.format_value("c", [1, 2]) == "vector< double >{1.0, 2.0}"

    def test_empty_literals(self):
        t = TypeRegistry().template("vector< double >")
        assert t.format_value("js", 0) == "[]"
        assert t.format_value("c", 0) == "vector< double >()"


class TestStructs:
    def test_fields_resolve_to_types(self):
        types = _make_types_with_vec()
        vec = types.get_type("Vec")
        assert isinstance(vec, StructType)
        assert list(vec.fields) == ["x", "y"]
        assert vec.fields["x"] is types.get_type("double")

    def test_duplicate_struct_rejected(self):
        types = _make_types_with_vec()
        with pytest.raises(UnknownTypeError, match="already defined"):
            types.struct("Vec", [("z", "double")])

    def test_zero_predicates(self):
        vec = _make_types_with_vec().get_type("Vec")
        assert vec.is_zero_value(0)
        assert vec.is_zero_value({"x": 0, "y": 0})
        assert not vec.is_zero_value({"x": 1})
        assert vec.is_one_value(1)

    def test_values_coerced_through_field_types(self):
        vec = _make_types_with_vec().get_type("Vec")
        assert isinstance(vec.coerce_value(0), float)
        assert vec.coerce_value({"x": 1, "y": 2}) == {"x": 1.0, "y": 2.0}
        assert isinstance(vec.coerce_value({"x": 1})["x"], float)

    def test_broadcast_literal_c(self):
        vec = _make_types_with_vec().get_type("Vec")
        assert vec.format_value("c", 0) == "Vec(0.0, 0.0)"

    def test_dict_literal_js(self):
        vec = _make_types_with_vec().get_type("Vec")
        assert vec.format_value("js", {"x": 1, "y": 2}) == "{__type:'Vec', x:1.0, y:2.0}"

    def test_referenced_types_are_transitive(self):
        types = _make_types_with_vec()
        types.struct("Path", [("points", "vector< Vec >"), ("origin", "Vec")])
        names = [t.typename for t in types.get_type("Path").referenced_types()]
        assert names == ["Path", "vector< Vec >", "Vec", "double"]

    def test_add_field_on_auto_extend(self):
        types = TypeRegistry()
        bag = types.struct("Bag", auto_extend=True)
        bag.add_field("a", types.get_type("double"))
        assert list(bag.fields) == ["a"]


class TestPrimitiveFormatting:
    def test_float_literals(self):
        double = TypeRegistry().get_type("double")
        assert double.format_value("c", 1.5) == "1.5"
        assert double.format_value("js", 2) == "2.0"

    @pytest.mark.parametrize(
        "language,value,expected",
        [
            ("c", math.nan, "NAN"),
            ("js", math.nan, "NaN"),
            ("c", math.inf, "INFINITY"),
            ("js", -math.inf, "-Infinity"),
        ],
    )
    def test_non_finite_literals(self, language, value, expected):
        assert TypeRegistry().get_type("double").format_value(language, value) == expected

    def test_int_and_bool_literals(self):
        types = TypeRegistry()
        assert types.get_type("int").format_value("c", 3) == "3"
        assert types.get_type("bool").format_value("js", True) == "true"

    def test_void_has_no_literal(self):
        with pytest.raises(UnknownTypeError):
            TypeRegistry().get_type("void").format_value("c", 0)
