"""Tests for type mapping, identifier casing and channel IDs."""

import pytest
from tools.dmxpgen.cpp_emitter import CppTypeMapper
from tools.dmxpgen.go_emitter import GoTypeMapper
from tools.dmxpgen.ir import (
    OP_CALL, OP_SERVE, SCALARS, EnumShape, EnumValueShape, FieldShape, IRModel,
    MessageShape, OperationDecl, TypeRef,
)
from tools.dmxpgen.python_emitter import PythonTypeMapper
from tools.dmxpgen.rust_emitter import RustTypeMapper, variant_names
from tools.dmxpgen.types import (
    camel_case, fnv1a_32, pascal_case, screaming_case, snake_case, words,
)

MAPPERS = [CppTypeMapper, GoTypeMapper, PythonTypeMapper, RustTypeMapper]


@pytest.fixture
def model():
    color = EnumShape("demo.Color", ("Color",), "demo.proto", (
        EnumValueShape("COLOR_UNSPECIFIED", 0),
        EnumValueShape("COLOR_RED", 1),
    ))
    inner = MessageShape("demo.Outer.Inner", ("Outer", "Inner"), "demo.proto")
    klass = MessageShape("demo.class", ("class",), "demo.proto", (
        FieldShape("type", TypeRef.scalar("string"), 1),
    ))
    return IRModel(messages=(inner, klass), enums=(color,))


# -- Casing ----------------------------------------------------------------

class TestCasing:
    def test_words(self):
        assert words("getHTTPStatus_v2") == ("get", "HTTP", "Status", "v2")

    def test_snake_case(self):
        assert snake_case("GetDeviceInfo") == "get_device_info"
        assert snake_case("already_snake") == "already_snake"

    def test_pascal_case(self):
        assert pascal_case("get_device_info") == "GetDeviceInfo"
        assert pascal_case("Ping") == "Ping"

    def test_camel_case(self):
        assert camel_case("GetName") == "getName"

    def test_screaming_case(self):
        assert screaming_case("LatestOnly") == "LATEST_ONLY"


# -- Channel IDs -----------------------------------------------------------

class TestFnv1a:
    def test_known_values(self):
        # FNV-1a 32-bit reference values.
        assert fnv1a_32("") == 0x811c9dc5
        assert fnv1a_32("a") == 0xe40c292c
        assert fnv1a_32("foobar") == 0xbf9cf968

    def test_deterministic(self):
        assert fnv1a_32("ping") == fnv1a_32("ping")
        assert fnv1a_32("ping") != fnv1a_32("pong")


# -- Mappers ---------------------------------------------------------------

class TestMappersTotal:
    @pytest.mark.parametrize("mapper_class", MAPPERS)
    def test_every_scalar_maps(self, model, mapper_class):
        mapper = mapper_class(model)
        for name in SCALARS:
            t = mapper.map_type(TypeRef.scalar(name))
            assert t.expr
            assert t.hook

    @pytest.mark.parametrize("mapper_class", MAPPERS)
    def test_composites_map(self, model, mapper_class):
        mapper = mapper_class(model)
        ref = TypeRef.map(TypeRef.scalar("string"),
                          TypeRef.repeated(TypeRef.message("demo.Outer.Inner")))
        t = mapper.map_type(ref)
        assert "Inner" in t.expr
        assert "Inner" in t.hook

    @pytest.mark.parametrize("mapper_class", MAPPERS)
    def test_deterministic(self, model, mapper_class):
        ref = TypeRef.repeated(TypeRef.enum("demo.Color"))
        assert mapper_class(model).map_type(ref) == mapper_class(model).map_type(ref)

    def test_unknown_kind(self, model):
        with pytest.raises(ValueError):
            PythonTypeMapper(model).map_type(TypeRef("bogus"))

    @pytest.mark.parametrize("mapper_class", MAPPERS)
    def test_type_outside_model(self, model, mapper_class):
        with pytest.raises(ValueError):
            mapper_class(model).map_type(TypeRef.message("demo.Missing"))
        with pytest.raises(ValueError):
            mapper_class(model).map_type(TypeRef.enum("demo.Outer.Inner"))


class TestPythonMapper:
    def test_scalars(self, model):
        m = PythonTypeMapper(model)
        assert m.map_type(TypeRef.scalar("int64")).expr == "int"
        assert m.map_type(TypeRef.scalar("bytes")).default == 'b""'

    def test_message_is_optional(self, model):
        t = PythonTypeMapper(model).map_type(TypeRef.message("demo.Outer.Inner"))
        assert t.expr == "Optional[Outer_Inner]"
        assert t.hook == "codec.message(Outer_Inner)"

    def test_repeated_message_uses_bare_name(self, model):
        t = PythonTypeMapper(model).map_type(
            TypeRef.repeated(TypeRef.message("demo.Outer.Inner")))
        assert t.expr == "List[Outer_Inner]"

    def test_enum_default(self, model):
        t = PythonTypeMapper(model).map_type(TypeRef.enum("demo.Color"))
        assert t.default == "Color.COLOR_UNSPECIFIED"

    def test_reserved_type_name_escaped(self, model):
        m = PythonTypeMapper(model)
        assert m.type_name("demo.class") == "class_"
        assert m.escape("None") == "None_"

    def test_custom_escape_suffix(self, model):
        m = PythonTypeMapper(model, escape_suffix="_x")
        assert m.type_name("demo.class") == "class_x"


class TestGoMapper:
    def test_message_pointer(self, model):
        t = GoTypeMapper(model).map_type(TypeRef.message("demo.Outer.Inner"))
        assert t.expr == "*Outer_Inner"

    def test_map(self, model):
        t = GoTypeMapper(model).map_type(
            TypeRef.map(TypeRef.scalar("string"), TypeRef.scalar("bytes")))
        assert t.expr == "map[string][]byte"
        assert t.hook == "codec.Map(codec.String, codec.Bytes)"

    def test_field_names_exported(self, model):
        m = GoTypeMapper(model)
        assert m.field_name("device_id") == "DeviceId"
        assert m.field_name("encode") == "Encode_"


class TestRustMapper:
    def test_symbols_joined(self, model):
        t = RustTypeMapper(model).map_type(TypeRef.message("demo.Outer.Inner"))
        assert t.expr == "Option<Box<OuterInner>>"
        assert t.hook == "codec::Msg<OuterInner>"

    def test_repeated_not_boxed(self, model):
        t = RustTypeMapper(model).map_type(TypeRef.repeated(TypeRef.message("demo.Outer.Inner")))
        assert t.expr == "Vec<OuterInner>"

    def test_field_keyword_escaped(self, model):
        assert RustTypeMapper(model).field_name("type") == "type_"

    def test_variant_prefix_stripped(self, model):
        assert variant_names(model.enum("demo.Color")) == [("Unspecified", 0), ("Red", 1)]

    def test_variant_aliases_dropped(self):
        shape = EnumShape("x.Mode", ("Mode",), "x.proto", (
            EnumValueShape("OFF", 0), EnumValueShape("ON", 1), EnumValueShape("ENABLED", 1),
        ))
        assert variant_names(shape) == [("Off", 0), ("On", 1)]


class TestCppMapper:
    def test_scalars_zero_initialized(self, model):
        t = CppTypeMapper(model).map_type(TypeRef.scalar("uint32"))
        assert t.expr == "std::uint32_t"
        assert t.default == "{}"

    def test_message_shared_ptr(self, model):
        t = CppTypeMapper(model).map_type(TypeRef.message("demo.Outer.Inner"))
        assert t.expr == "std::shared_ptr<Outer_Inner>"

    def test_reserved(self, model):
        assert CppTypeMapper(model).type_name("demo.class") == "class_"


# -- Identifier collisions -------------------------------------------------

class TestIdentifierCollisions:
    def test_rust_nested_meets_top_level(self):
        nested = MessageShape("demo.Outer.Inner", ("Outer", "Inner"), "demo.proto")
        top = MessageShape("demo.OuterInner", ("OuterInner",), "demo.proto")
        m = RustTypeMapper(IRModel(messages=(nested, top)))
        assert m.type_name("demo.Outer.Inner") == "OuterInner"
        assert m.type_name("demo.OuterInner") == "OuterInner2"

    def test_underscore_join_keeps_both(self):
        nested = MessageShape("demo.Outer.Inner", ("Outer", "Inner"), "demo.proto")
        top = MessageShape("demo.OuterInner", ("OuterInner",), "demo.proto")
        m = GoTypeMapper(IRModel(messages=(nested, top)))
        assert m.type_name("demo.Outer.Inner") == "Outer_Inner"
        assert m.type_name("demo.OuterInner") == "OuterInner"

    def test_escaped_name_taken(self):
        klass = MessageShape("demo.class", ("class",), "demo.proto")
        taken = MessageShape("demo.class_", ("class_",), "demo.proto")
        m = PythonTypeMapper(IRModel(messages=(klass, taken)))
        assert m.type_name("demo.class") == "class_"
        assert m.type_name("demo.class_") == "class_2"

    @pytest.mark.parametrize("mapper_class", MAPPERS)
    def test_operation_names_equal_after_casing(self, mapper_class):
        s = TypeRef.scalar("string")
        model = IRModel(operations=(
            OperationDecl("get_status", OP_CALL, "a", s, s),
            OperationDecl("get_status", OP_SERVE, "a", s, s),
            OperationDecl("GetStatus", OP_CALL, "b", s, s),
        ))
        m = mapper_class(model)
        assert m.operation_base("get_status") == "GetStatus"
        assert m.operation_base("GetStatus") == "GetStatus2"
        assert m.binding_name(model.operations[1]) == "GetStatusServer"
        assert m.binding_name(model.operations[2]) == "GetStatus2Client"

    @pytest.mark.parametrize("mapper_class", MAPPERS)
    def test_binding_avoids_type_names(self, mapper_class):
        s = TypeRef.scalar("string")
        shape = MessageShape("demo.PingClient", ("PingClient",), "demo.proto")
        model = IRModel(messages=(shape,),
                        operations=(OperationDecl("Ping", OP_CALL, "ping", s, s),))
        m = mapper_class(model)
        assert m.type_name("demo.PingClient") == "PingClient"
        assert m.binding_name(model.operations[0]) == "Ping2Client"

    def test_rust_consts_checked(self):
        # Different PascalCase, same SCREAMING_CASE.
        s = TypeRef.scalar("string")
        model = IRModel(operations=(
            OperationDecl("HTTPGet", OP_CALL, "a", s, s),
            OperationDecl("HttpGet", OP_CALL, "b", s, s),
        ))
        m = RustTypeMapper(model)
        assert m.operation_base("HTTPGet") == "HTTPGet"
        assert m.operation_base("HttpGet") == "HttpGet2"
