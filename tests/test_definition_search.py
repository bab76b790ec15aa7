"""
Definition Search Tests — end to end over parsed sources.

Covers:
  1. search_unit over in-memory sources (stop on first match / last wins)
  2. Declarations from named declarations and from call sites
  3. Workspace search over tests/mock_project (header + sources)
  4. SearchConfig validation
"""

import os
import sys
import tempfile
import unittest

from pydantic import ValidationError

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from defsearch.config import SearchConfig
from defsearch.declaration_data import (
    AmbiguousDefinitionError, DeclarationData, ExpectedScope, OverwritePolicy, ScopeKind,
)
from defsearch.declaration_search import collect_call_site, collect_declaration
from defsearch.definition_search import DefinitionSearch
from defsearch.translation_unit import TranslationUnit

MOCK_PROJECT = os.path.join(PROJECT_ROOT, "tests", "mock_project")


DUPLICATED = (
    "namespace A {\n"
    "void f(int x) { x += 1; }\n"
    "}\n"
    "void A::f(int y) { y += 2; }\n"
    "void f(long z) {}\n"
)


def a_f_int() -> DeclarationData:
    return DeclarationData("f", ["int"], [ExpectedScope.namespace("A")])


class TestSearchUnit(unittest.TestCase):

    def test_first_match_by_default(self):
        search = DefinitionSearch()
        query = search.new_query(a_f_int())
        definition = search.search_unit(query, TranslationUnit.from_source(DUPLICATED))
        self.assertEqual(definition.start_line, 2)
        self.assertEqual(query.match_count, 1)

    def test_last_match_wins_without_early_stop(self):
        search = DefinitionSearch(SearchConfig(stop_on_first_match=False))
        query = search.new_query(a_f_int())
        definition = search.search_unit(query, TranslationUnit.from_source(DUPLICATED))
        self.assertEqual(definition.start_line, 4)
        self.assertEqual(definition.body, "{ y += 2; }")
        self.assertEqual(query.match_count, 2)

    def test_conflict_policy_reports_duplicate_definitions(self):
        search = DefinitionSearch(SearchConfig(
            stop_on_first_match=False, overwrite_policy=OverwritePolicy.ERROR_ON_CONFLICT,
        ))
        query = search.new_query(a_f_int())
        with self.assertRaises(AmbiguousDefinitionError):
            search.search_unit(query, TranslationUnit.from_source(DUPLICATED))

    def test_no_match_returns_none(self):
        search = DefinitionSearch()
        query = search.new_query(DeclarationData("f", ["double"], [ExpectedScope.namespace("A")]))
        self.assertIsNone(search.search_unit(query, TranslationUnit.from_source(DUPLICATED)))
        self.assertFalse(query.has_match)

    def test_definition_data_fields(self):
        source = (
            "namespace A {\n"
            "struct B {\n"
            "    int twice(int value) { return value * 2; }\n"
            "};\n"
            "}\n"
        )
        search = DefinitionSearch()
        declaration = DeclarationData(
            "twice", ["int"], [ExpectedScope.type_scope("B"), ExpectedScope.namespace("A")],
        )
        definition = search.search_unit(search.new_query(declaration), TranslationUnit.from_source(source))
        self.assertEqual(definition.qualified_name, "A::B::twice")
        self.assertEqual(definition.parameter_names, ["value"])
        self.assertEqual(definition.signature, "int twice(int value)")
        self.assertEqual(definition.body, "{ return value * 2; }")
        self.assertTrue(definition.is_inline)
        self.assertTrue(definition.is_method)
        self.assertEqual(definition.location, "<memory>:3")


class TestDeclarationSearch(unittest.TestCase):

    def test_collect_declaration(self):
        unit = TranslationUnit.from_source(
            "namespace A { struct B { void f(const char *s, unsigned n); }; }\n"
        )
        declaration = collect_declaration(unit, "f")
        self.assertEqual(declaration.parameter_types, ("const char *", "unsigned int"))
        self.assertEqual(
            declaration.expected_scopes,
            (ExpectedScope(ScopeKind.TYPE_SCOPE, "B"), ExpectedScope(ScopeKind.NAMESPACE, "A")),
        )
        self.assertEqual(declaration.qualified_name, "A::B::f")

    def test_collect_declaration_on_line(self):
        unit = TranslationUnit.from_source("void f(int);\nvoid f(double);\n")
        self.assertEqual(collect_declaration(unit, "f", line=2).parameter_types, ("double",))
        self.assertIsNone(collect_declaration(unit, "f", line=5))

    def test_call_site_picks_overload_by_argument_count(self):
        unit = TranslationUnit.from_source(
            "void g(int a);\n"
            "void g(int a, int b);\n"
            "int main() {\n"
            "    g(1, 2);\n"
            "}\n"
        )
        declaration = collect_call_site(unit, 4, 5)
        self.assertEqual(declaration.parameter_types, ("int", "int"))

    def test_nested_class_defined_out_of_line(self):
        unit = TranslationUnit.from_source(
            "struct A { struct B; };\n"
            "struct A::B { void f(int); };\n"
            "void A::B::f(int x) {}\n"
        )
        declaration = collect_declaration(unit, "f")
        self.assertEqual(declaration.qualified_name, "A::B::f")
        search = DefinitionSearch()
        definition = search.search_unit(search.new_query(declaration), unit)
        self.assertEqual(definition.start_line, 3)

    def test_no_call_at_position(self):
        unit = TranslationUnit.from_source("int x = 1;\n")
        with self.assertLogs("defsearch.declaration_search", level="WARNING"):
            self.assertIsNone(collect_call_site(unit, 1, 5))


class TestWorkspaceSearch(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.search = DefinitionSearch()

    def test_discover_files(self):
        self.assertEqual(
            self.search.discover_files(MOCK_PROJECT),
            ["include/geometry.hpp", "src/geometry.cpp", "src/legacy.c", "src/main.cpp"],
        )

    def test_method_call_finds_out_of_line_definition(self):
        """p.scale(2.0) resolves to geo::Point::scale(double), not the detail class."""
        definition = self.search.find_definition(MOCK_PROJECT, "src/main.cpp", 5, 7)
        self.assertIsNotNone(definition)
        self.assertEqual(definition.file_path, "src/geometry.cpp")
        self.assertEqual(definition.start_line, 11)
        self.assertEqual(definition.qualified_name, "geo::Point::scale")
        self.assertEqual(definition.parameter_names, ["factor"])
        self.assertTrue(definition.is_method)
        self.assertFalse(definition.is_inline)

    def test_overload_with_typedef_parameters(self):
        """The header spells the parameters ``scalar``; the definition spells them ``double``."""
        definition = self.search.find_definition(MOCK_PROJECT, "src/main.cpp", 8, 7)
        self.assertEqual(definition.start_line, 16)
        self.assertEqual(definition.parameter_names, ["fx", "fy"])

    def test_qualified_free_function_call(self):
        definition = self.search.find_definition(MOCK_PROJECT, "src/main.cpp", 6, 16)
        self.assertEqual(definition.location, "src/geometry.cpp:25")
        self.assertEqual(definition.qualified_name, "geo::distance")

    def test_call_using_default_argument(self):
        """describe(const Label&, int = 2) called with one argument."""
        definition = self.search.find_definition(MOCK_PROJECT, "src/main.cpp", 7, 5)
        self.assertEqual(definition.location, "src/geometry.cpp:31")

    def test_nested_class_with_same_name_is_rejected(self):
        search = DefinitionSearch(SearchConfig(stop_on_first_match=False))
        declaration = DeclarationData(
            "scale", ["double"],
            [ExpectedScope.type_scope("Point"), ExpectedScope.namespace("geo")],
        )
        query = search.new_query(declaration)
        definition = search.search_workspace(query, MOCK_PROJECT)
        self.assertEqual(definition.start_line, 11)
        self.assertEqual(query.match_count, 1)

    def test_detail_class_found_with_its_own_scopes(self):
        declaration = DeclarationData("scale", ["double"], [
            ExpectedScope.type_scope("Point"),
            ExpectedScope.namespace("detail"),
            ExpectedScope.namespace("geo"),
        ])
        definition = self.search.search_workspace(self.search.new_query(declaration), MOCK_PROJECT)
        self.assertEqual(definition.start_line, 21)

    def test_c_source_with_typedefs(self):
        """counter_t * canonicalises to the record it names, with the tag dropped."""
        declaration = DeclarationData("counter_add", ["counter *", "unsigned int"])
        definition = self.search.search_workspace(self.search.new_query(declaration), MOCK_PROJECT)
        self.assertEqual(definition.location, "src/legacy.c:10")
        self.assertEqual(definition.parameter_names, ["c", "n"])

    def test_missing_definition_logs_and_returns_none(self):
        declaration = DeclarationData("nowhere", [])
        with self.assertLogs("defsearch.definition_search", level="INFO"):
            self.assertIsNone(
                self.search.search_workspace(self.search.new_query(declaration), MOCK_PROJECT)
            )


class TestFileLocalTypedefs(unittest.TestCase):
    """Typedefs are visible in their own file and in files that include it."""

    FILES = {
        "a.c": "typedef int handle;\nvoid close_it(handle h) {}\n",
        "b.c": "typedef long handle;\nvoid close_it(long h) {}\n",
        "common.h": "typedef unsigned char byte;\n",
        "d.c": '#include "common.h"\nvoid put(byte b) {}\n',
    }

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        for name, text in self.FILES.items():
            with open(os.path.join(self.tmp.name, name), "w") as f:
                f.write(text)
        self.search = DefinitionSearch(SearchConfig(stop_on_first_match=False))

    def tearDown(self):
        self.tmp.cleanup()

    def find(self, name, types):
        query = self.search.new_query(DeclarationData(name, types))
        return self.search.search_workspace(query, self.tmp.name), query

    def test_same_typedef_name_in_two_sources(self):
        definition, query = self.find("close_it", ["int"])
        self.assertEqual(definition.location, "a.c:2")
        self.assertEqual(query.match_count, 1)

        definition, query = self.find("close_it", ["long"])
        self.assertEqual(definition.location, "b.c:2")
        self.assertEqual(query.match_count, 1)

    def test_included_header_typedef_is_visible(self):
        definition, _ = self.find("put", ["unsigned char"])
        self.assertEqual(definition.location, "d.c:2")

    def test_unit_views(self):
        units = self.search.load_workspace(self.tmp.name)
        self.assertEqual(units["a.c"].context.registry.resolve("handle"), "int")
        self.assertEqual(units["b.c"].context.registry.resolve("handle"), "long")
        self.assertEqual(units["d.c"].context.registry.resolve("byte"), "unsigned char")
        self.assertEqual(units["a.c"].context.registry.resolve("byte"), "byte")


class TestSearchConfig(unittest.TestCase):

    def test_defaults(self):
        config = SearchConfig()
        self.assertTrue(config.stop_on_first_match)
        self.assertIs(config.overwrite_policy, OverwritePolicy.LAST_WINS)
        self.assertFalse(config.strict_scopes)

    def test_extensions_are_normalised(self):
        self.assertEqual(SearchConfig(extensions=["CPP", ".H"]).extensions, [".cpp", ".h"])

    def test_unknown_language_rejected(self):
        with self.assertRaises(ValidationError):
            SearchConfig(language="rust")

    def test_policy_from_string(self):
        config = SearchConfig(overwrite_policy="first_wins")
        self.assertIs(config.overwrite_policy, OverwritePolicy.FIRST_WINS)


if __name__ == "__main__":
    unittest.main()
