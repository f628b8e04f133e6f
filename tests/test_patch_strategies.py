"""
IDPatch Patch Strategy Tests
Selection order, transformations and idempotence of the strategy cascade
"""

import re

import pytest

from idpatch.core.models import ResourceKind, StrategyType
from idpatch.core.patch_strategies import (
    CHECKSUM_ORIGINAL, CHECKSUM_REWRITTEN, INJECTION_MARKER, MAC_OVERRIDE_MARKER,
    RANDOM_UUID_MARKER, ChecksumRewrite, DeviceFunctionOverride, GenericWrapperInject,
    StrategyResolver, UniversalRequireIntercept, generate_machine_id, is_already_patched
)

from conftest import CLI_JS, MAIN_JS


UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


@pytest.fixture
def resolver():
    return StrategyResolver()


def assert_no_strategy_fires(resolver, kind, content):
    for strategy in resolver.strategies_for(kind):
        assert not strategy.matches(content), strategy.name


class TestStrategyPriority:
    """Resolver picks the narrowest applicable strategy"""

    def test_primary_wins_over_generic(self, resolver):
        """Content matching primary and generic patterns selects the primary tier"""
        content = "function a$(t){switch(t){}} // IOPlatformUUID\nawait v5(!1)"
        assert GenericWrapperInject().matches(content)

        strategy = resolver.resolve(ResourceKind.IDENTIFIER_LOOKUP, content)
        assert strategy.strategy_type == StrategyType.FUNCTION_INJECT_PRIMARY

    def test_alternate_selected_without_primary(self, resolver):
        strategy = resolver.resolve(ResourceKind.IDENTIFIER_LOOKUP, CLI_JS)
        assert strategy.strategy_type == StrategyType.FUNCTION_INJECT_ALTERNATE

    def test_device_override_before_generic(self, resolver):
        content = "function t$(){return mac()} IOPlatformUUID"
        strategy = resolver.resolve(ResourceKind.IDENTIFIER_LOOKUP, content)
        assert strategy.strategy_type == StrategyType.DEVICE_FUNCTION_OVERRIDE

    def test_generic_selected_on_keyword(self, resolver):
        content = "const k='IOPlatformUUID';"
        strategy = resolver.resolve(ResourceKind.IDENTIFIER_LOOKUP, content)
        assert strategy.strategy_type == StrategyType.GENERIC_WRAPPER_INJECT

    def test_universal_is_catch_all(self, resolver):
        strategy = resolver.resolve(ResourceKind.IDENTIFIER_LOOKUP, "module.exports = {};")
        assert strategy.strategy_type == StrategyType.UNIVERSAL_REQUIRE_INTERCEPT


class TestPrimaryScenario:
    """The a$ lookup function gets an early random return"""

    def test_patch_and_no_refire(self, resolver):
        strategy = resolver.resolve(ResourceKind.IDENTIFIER_LOOKUP, MAIN_JS)
        patched = strategy.apply(MAIN_JS)

        assert "function a$(t){return crypto.randomUUID(); switch(t)" in patched
        assert strategy.post_condition in patched
        assert strategy.call_sites_rewritten == 1
        assert is_already_patched(ResourceKind.IDENTIFIER_LOOKUP, patched)
        assert resolver.resolve(ResourceKind.IDENTIFIER_LOOKUP, patched) is None
        assert_no_strategy_fires(resolver, ResourceKind.IDENTIFIER_LOOKUP, patched)


class TestUniversalScenario:
    """Catch-all interception with freshly generated identifiers"""

    CONTENT = "'use strict';\nmodule.exports = function() { return 1; };\n"

    def test_injection_block_prepended(self, resolver):
        strategy = resolver.resolve(ResourceKind.IDENTIFIER_LOOKUP, self.CONTENT)
        patched = strategy.apply(self.CONTENT)

        assert patched.lstrip().startswith(INJECTION_MARKER)
        assert patched.endswith(self.CONTENT)
        assert strategy.call_sites_rewritten == 0
        for value in strategy.values.values():
            assert value in patched
        assert_no_strategy_fires(resolver, ResourceKind.IDENTIFIER_LOOKUP, patched)

    def test_values_fresh_and_distinct(self):
        first = UniversalRequireIntercept()
        second = UniversalRequireIntercept()
        first.apply(self.CONTENT)
        second.apply(self.CONTENT)

        assert len(set(first.values.values())) == 4
        assert set(first.values.values()).isdisjoint(second.values.values())

    def test_value_formats(self):
        strategy = UniversalRequireIntercept()
        strategy.apply(self.CONTENT)
        values = strategy.values

        assert UUID_RE.match(values["new_uuid"])
        assert UUID_RE.match(values["device_id"])
        assert re.match(r"^auth0\|user_[0-9a-f]{32}$", values["machine_id"])
        assert re.match(r"^[0-9a-f]{64}$", values["mac_machine_id"])

    def test_header_carries_timestamp(self):
        strategy = UniversalRequireIntercept(clock=lambda: 1700000000.0)
        patched = strategy.apply(self.CONTENT)
        assert re.search(r"// IDPatch Injection - \d{14}\n", patched)
        assert "originalRequire_1700000000" in patched


class TestChecksumRewrite:
    """Checksum header literal rewrite"""

    def test_rewrite(self, resolver):
        content = "x;" + CHECKSUM_ORIGINAL + ";y"
        strategy = resolver.resolve(ResourceKind.CHECKSUM_HEADER, content)
        assert isinstance(strategy, ChecksumRewrite)

        patched = strategy.apply(content)
        assert CHECKSUM_REWRITTEN in patched
        assert CHECKSUM_ORIGINAL not in patched
        assert_no_strategy_fires(resolver, ResourceKind.CHECKSUM_HEADER, patched)

    def test_no_fallback_when_literal_drifted(self, resolver):
        content = 'i.header.set("x-cursor-checksum",something_else)'
        assert resolver.resolve(ResourceKind.CHECKSUM_HEADER, content) is None


class TestDeviceFunctionOverride:
    """MAC and device id helpers are rewritten independently"""

    def test_mac_helper_only(self):
        strategy = DeviceFunctionOverride()
        patched = strategy.apply("function t$(){return readMac()}")
        assert 'function t$(){return "00:00:00:00:00:00";' in patched
        assert strategy.post_condition == MAC_OVERRIDE_MARKER
        assert strategy.post_condition in patched

    def test_both_helpers(self):
        strategy = DeviceFunctionOverride()
        patched = strategy.apply("function t$(){return m()}\nasync function y5(t){return d(t)}")
        assert MAC_OVERRIDE_MARKER in patched
        assert "async function y5(t){return crypto.randomUUID();" in patched
        assert strategy.call_sites_rewritten == 2
        assert strategy.post_condition in patched


class TestGenericWrapperInject:
    """Random id generator prepended and call sites rerouted"""

    def test_call_sites_rewritten_outside_definition(self):
        content = ("function a$(t){return lookup('IOPlatformUUID')}\n"
                   "const id=a$(t);\n"
                   "const other=await v5(!1);\n")
        strategy = GenericWrapperInject(clock=lambda: 1700000000.0)
        patched = strategy.apply(content)

        assert strategy.call_sites_rewritten == 2
        assert "function a$(t){" in patched
        assert "const id=randomDeviceId_1700000000();" in patched
        assert "const other=randomDeviceId_1700000000();" in patched
        assert "const randomDeviceId_1700000000 = () =>" in patched
        assert patched.lstrip().startswith(INJECTION_MARKER)

    def test_no_call_sites_still_prepends(self):
        strategy = GenericWrapperInject()
        patched = strategy.apply("const k='IOPlatformUUID';")
        assert strategy.call_sites_rewritten == 0
        assert INJECTION_MARKER in patched


class TestIdempotenceMarkers:
    """Any marker of a kind disables every strategy of that kind"""

    @pytest.mark.parametrize("marker", [RANDOM_UUID_MARKER, MAC_OVERRIDE_MARKER, INJECTION_MARKER])
    def test_marker_blocks_all_identifier_strategies(self, resolver, marker):
        content = MAIN_JS + "\n" + marker
        assert_no_strategy_fires(resolver, ResourceKind.IDENTIFIER_LOOKUP, content)
        assert resolver.resolve(ResourceKind.IDENTIFIER_LOOKUP, content) is None

    def test_machine_id_format(self):
        assert re.match(r"^auth0\|user_[0-9a-f]{32}$", generate_machine_id())
        assert generate_machine_id() != generate_machine_id()
