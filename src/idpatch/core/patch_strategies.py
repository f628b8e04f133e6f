"""
IDPatch Patch Strategies
Ordered match-and-transform rules for target resources and the resolver
that picks the narrowest applicable one.

Strategies operate on resource text only; they never touch the filesystem,
which keeps selection testable without a bundle on disk.
"""

import re
import time
import uuid
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from idpatch.core.models import ResourceKind, StrategyType


logger = logging.getLogger(__name__)


# Markers left behind by successful patches
RANDOM_UUID_MARKER = "return crypto.randomUUID()"
MAC_OVERRIDE_MARKER = 'return "00:00:00:00:00:00"'
INJECTION_MARKER = "// IDPatch Injection"

CHECKSUM_ORIGINAL = 'i.header.set("x-cursor-checksum",e===void 0?`${p}${t}`:`${p}${t}/${e}`)'
CHECKSUM_REWRITTEN = 'i.header.set("x-cursor-checksum",e===void 0?`${p}${t}`:`${p}${t}/${p}`)'

KIND_MARKERS: Dict[ResourceKind, Tuple[str, ...]] = {
    ResourceKind.CHECKSUM_HEADER: (CHECKSUM_REWRITTEN,),
    ResourceKind.IDENTIFIER_LOOKUP: (RANDOM_UUID_MARKER, MAC_OVERRIDE_MARKER, INJECTION_MARKER),
}


def is_already_patched(kind: ResourceKind, content: str) -> bool:
    """True if content carries any marker of a prior patch for this kind"""
    return any(marker in content for marker in KIND_MARKERS.get(kind, ()))


def generate_uuid() -> str:
    """Fresh lowercase random UUID"""
    return str(uuid.uuid4()).lower()


def generate_random_hex(num_bytes: int = 32) -> str:
    """Fresh random hex string, two characters per byte"""
    return secrets.token_hex(num_bytes)


def generate_machine_id() -> str:
    """Fresh machine identifier in the auth0 user format"""
    return f"auth0|user_{generate_random_hex(16)}"


class PatchStrategy(ABC):
    """
    A concrete match-and-transform rule for one resource kind.

    ``matches`` is false on content already carrying any marker for the
    strategy's resource kind, so a patched resource never re-fires.
    """

    strategy_type: StrategyType
    kind: ResourceKind
    description: str = ""

    def __init__(self):
        self.call_sites_rewritten = 0

    @property
    def name(self) -> str:
        return self.strategy_type.value

    @property
    @abstractmethod
    def post_condition(self) -> str:
        """Marker that must be present in the transformed content"""

    @abstractmethod
    def _pattern_matches(self, content: str) -> bool:
        """True if the code shape this strategy targets is present"""

    @abstractmethod
    def apply(self, content: str) -> str:
        """Return transformed content"""

    def matches(self, content: str) -> bool:
        if is_already_patched(self.kind, content):
            return False
        return self._pattern_matches(content)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


class LiteralRewriteStrategy(PatchStrategy):
    """Replaces every occurrence of a literal with a substitute"""

    def __init__(self, pattern: str, replacement: str):
        super().__init__()
        self.pattern = pattern
        self.replacement = replacement

    def _pattern_matches(self, content: str) -> bool:
        return self.pattern in content

    def apply(self, content: str) -> str:
        if self.pattern not in content:
            raise ValueError(f"{self.name}: pattern not found")
        self.call_sites_rewritten = content.count(self.pattern)
        return content.replace(self.pattern, self.replacement)


class ChecksumRewrite(LiteralRewriteStrategy):
    """Make the checksum header reuse its first operand"""

    strategy_type = StrategyType.CHECKSUM_REWRITE
    kind = ResourceKind.CHECKSUM_HEADER
    description = "Rewrite x-cursor-checksum header expression"

    def __init__(self):
        super().__init__(CHECKSUM_ORIGINAL, CHECKSUM_REWRITTEN)

    @property
    def post_condition(self) -> str:
        return CHECKSUM_REWRITTEN


class FunctionInjectPrimary(LiteralRewriteStrategy):
    """Early-return a random UUID from the platform UUID lookup"""

    strategy_type = StrategyType.FUNCTION_INJECT_PRIMARY
    kind = ResourceKind.IDENTIFIER_LOOKUP
    description = "Inject randomUUID into a$ lookup function"

    def __init__(self):
        super().__init__(
            "function a$(t){switch",
            "function a$(t){return crypto.randomUUID(); switch",
        )

    @property
    def post_condition(self) -> str:
        return RANDOM_UUID_MARKER


class FunctionInjectAlternate(LiteralRewriteStrategy):
    """Same early return, for the async lookup function"""

    strategy_type = StrategyType.FUNCTION_INJECT_ALTERNATE
    kind = ResourceKind.IDENTIFIER_LOOKUP
    description = "Inject randomUUID into async v5 lookup function"

    def __init__(self):
        super().__init__(
            "async function v5(t){let e=",
            "async function v5(t){return crypto.randomUUID(); let e=",
        )

    @property
    def post_condition(self) -> str:
        return RANDOM_UUID_MARKER


class DeviceFunctionOverride(PatchStrategy):
    """Override the MAC address and device id helpers independently"""

    strategy_type = StrategyType.DEVICE_FUNCTION_OVERRIDE
    kind = ResourceKind.IDENTIFIER_LOOKUP
    description = "Override t$ (MAC address) and y5 (device id) helpers"

    MAC_FUNCTION = "function t$(){"
    DEVICE_FUNCTION = "async function y5(t){"

    def __init__(self):
        super().__init__()
        self.rewrites: List[str] = []

    @property
    def post_condition(self) -> str:
        # Either helper rewrite satisfies the post condition
        return MAC_OVERRIDE_MARKER if self.rewrites == ["mac"] else RANDOM_UUID_MARKER

    def _pattern_matches(self, content: str) -> bool:
        return self.MAC_FUNCTION in content or self.DEVICE_FUNCTION in content

    def apply(self, content: str) -> str:
        self.rewrites = []
        if self.MAC_FUNCTION in content:
            content = content.replace(self.MAC_FUNCTION, self.MAC_FUNCTION + MAC_OVERRIDE_MARKER + ";")
            self.rewrites.append("mac")
            logger.debug("Rewrote MAC address helper t$")
        if self.DEVICE_FUNCTION in content:
            content = content.replace(self.DEVICE_FUNCTION, self.DEVICE_FUNCTION + RANDOM_UUID_MARKER + ";")
            self.rewrites.append("device")
            logger.debug("Rewrote device id helper y5")
        if not self.rewrites:
            raise ValueError(f"{self.name}: no helper function found")
        self.call_sites_rewritten = len(self.rewrites)
        return content


class InjectionStrategy(PatchStrategy):
    """Base for strategies that prepend a self-contained code block"""

    def __init__(self, clock: Callable[[], float] = time.time):
        super().__init__()
        self.clock = clock

    @property
    def post_condition(self) -> str:
        return INJECTION_MARKER

    def _header(self, stamp: float, title: str) -> str:
        return (
            f"{INJECTION_MARKER} - {time.strftime('%Y%m%d%H%M%S', time.localtime(stamp))}\n"
            f"// {title} - {int(stamp)}\n"
        )


class GenericWrapperInject(InjectionStrategy):
    """Prepend a random-id generator and route known call sites to it"""

    strategy_type = StrategyType.GENERIC_WRAPPER_INJECT
    kind = ResourceKind.IDENTIFIER_LOOKUP
    description = "Prepend random device id generator and rewrite call sites"

    KEYWORD = "IOPlatformUUID"
    CALL_SITES: Tuple[Tuple[str, str], ...] = (
        (r"await v5\(!1\)", "await v5(!1)"),
        (r"(?<!function )a\$\(t\)", "a$(t)"),
    )

    TEMPLATE = (
        "const {func} = () => {{\n"
        "    try {{\n"
        "        return require('crypto').randomUUID();\n"
        "    }} catch (e) {{\n"
        "        return 'xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx'.replace(/[xy]/g, c => {{\n"
        "            const r = Math.random() * 16 | 0;\n"
        "            return (c === 'x' ? r : (r & 0x3 | 0x8)).toString(16);\n"
        "        }});\n"
        "    }}\n"
        "}};\n"
    )

    def _pattern_matches(self, content: str) -> bool:
        return self.KEYWORD in content

    def apply(self, content: str) -> str:
        stamp = self.clock()
        func = f"randomDeviceId_{int(stamp)}"

        self.call_sites_rewritten = 0
        for pattern, label in self.CALL_SITES:
            content, count = re.subn(pattern, f"{func}()", content)
            if count:
                logger.debug(f"Rewrote {count} call site(s) of {label}")
            self.call_sites_rewritten += count

        if not self.call_sites_rewritten:
            logger.warning("Generic injection: no known call sites found, generator prepended only")

        block = self._header(stamp, "Random Device ID Generator Injection") + self.TEMPLATE.format(func=func)
        return f"\n{block}\n{content}"


class UniversalRequireIntercept(InjectionStrategy):
    """
    Catch-all: intercept ``require('crypto')`` and define global identifier
    getters with values generated once per patch.
    """

    strategy_type = StrategyType.UNIVERSAL_REQUIRE_INTERCEPT
    kind = ResourceKind.IDENTIFIER_LOOKUP
    description = "Prepend module loader interception with fixed identifiers"

    TEMPLATE = (
        "const originalRequire_{stamp} = require;\n"
        "require = function(module) {{\n"
        "    const result = originalRequire_{stamp}(module);\n"
        "    if (module === 'crypto' && result.randomUUID) {{\n"
        "        const originalRandomUUID_{stamp} = result.randomUUID;\n"
        "        result.randomUUID = function() {{\n"
        "            return '{new_uuid}';\n"
        "        }};\n"
        "    }}\n"
        "    return result;\n"
        "}};\n"
        "\n"
        "global.getMachineId = function() {{ return '{machine_id}'; }};\n"
        "global.getDeviceId = function() {{ return '{device_id}'; }};\n"
        "global.macMachineId = '{mac_machine_id}';\n"
    )

    def __init__(self, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self.values: Dict[str, str] = {}

    def _pattern_matches(self, content: str) -> bool:
        return True

    def generate_values(self) -> Dict[str, str]:
        return {
            "new_uuid": generate_uuid(),
            "machine_id": generate_machine_id(),
            "device_id": generate_uuid(),
            "mac_machine_id": generate_random_hex(32),
        }

    def apply(self, content: str) -> str:
        stamp = self.clock()
        self.values = self.generate_values()
        self.call_sites_rewritten = 0
        logger.warning("No known identifier code shape found, using universal interception")

        block = self._header(stamp, "Global Device Identifier Interception")
        block += self.TEMPLATE.format(stamp=int(stamp), **self.values)
        return f"\n{block}\n{content}"


class StrategyResolver:
    """Selects the first applicable strategy for a resource, in priority order"""

    def __init__(self, strategy_factories: Optional[Dict[ResourceKind, List[Callable[[], PatchStrategy]]]] = None):
        self.logger = logging.getLogger(__name__)
        self.strategy_factories = strategy_factories or self.default_factories()

    @staticmethod
    def default_factories() -> Dict[ResourceKind, List[Callable[[], PatchStrategy]]]:
        return {
            # Optional hardening: no fallback when the literal has drifted
            ResourceKind.CHECKSUM_HEADER: [ChecksumRewrite],
            ResourceKind.IDENTIFIER_LOOKUP: [
                FunctionInjectPrimary,
                FunctionInjectAlternate,
                DeviceFunctionOverride,
                GenericWrapperInject,
                UniversalRequireIntercept,
            ],
        }

    def strategies_for(self, kind: ResourceKind) -> List[PatchStrategy]:
        """Fresh strategy instances for a kind, in priority order"""
        return [factory() for factory in self.strategy_factories.get(kind, [])]

    def resolve(self, kind: ResourceKind, content: str) -> Optional[PatchStrategy]:
        """Return the highest-priority strategy matching content, or None"""
        if is_already_patched(kind, content):
            self.logger.debug(f"{kind.value} resource already patched, no strategy selected")
            return None

        for strategy in self.strategies_for(kind):
            if strategy.matches(content):
                self.logger.info(f"Selected strategy {strategy.name} for {kind.value} resource")
                return strategy

        if kind == ResourceKind.CHECKSUM_HEADER:
            self.logger.warning("x-cursor-checksum setting code not found, leaving resource unpatched")
            self._log_checksum_context(content)
        else:
            self.logger.warning(f"No strategy matched {kind.value} resource")
        return None

    def _log_checksum_context(self, content: str):
        """Record lines that might help update the checksum literal"""
        for keyword in ("header.set", "checksum"):
            hits = [line.strip()[:200] for line in content.splitlines() if keyword in line][:20]
            for hit in hits:
                self.logger.debug(f"[FILE_CONTENT] '{keyword}': {hit}")
