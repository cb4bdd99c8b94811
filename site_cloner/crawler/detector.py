"""
Build-tool detector.

Infers which frontend toolchain produced a site from page-level signals:
framework marker flags and the script URLs of the entry page. Each tool has
an independent detector; the best match becomes the session's frozen
fingerprint.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..utils.log import get_logger


UNKNOWN = "unknown"

# Minimum confidence a fingerprint needs before tool conventions apply
MIN_CONFIDENCE = 0.8


@dataclass
class BuildSignals:
    """Page-level evidence collected from the entry page."""

    has_vue: bool = False
    has_react: bool = False
    has_vite: bool = False
    has_angular: bool = False
    has_webpack: bool = False
    has_next: bool = False
    has_nuxt: bool = False
    dev_client: bool = False
    script_sources: List[str] = field(default_factory=list)
    meta_generators: List[str] = field(default_factory=list)

    def merge(self, other: "BuildSignals") -> "BuildSignals":
        """Combine two observations of the same page (static markup and runtime)."""
        scripts = list(self.script_sources)
        scripts.extend(s for s in other.script_sources if s not in scripts)
        generators = list(self.meta_generators)
        generators.extend(g for g in other.meta_generators if g not in generators)
        return BuildSignals(
            has_vue=self.has_vue or other.has_vue,
            has_react=self.has_react or other.has_react,
            has_vite=self.has_vite or other.has_vite,
            has_angular=self.has_angular or other.has_angular,
            has_webpack=self.has_webpack or other.has_webpack,
            has_next=self.has_next or other.has_next,
            has_nuxt=self.has_nuxt or other.has_nuxt,
            dev_client=self.dev_client or other.dev_client,
            script_sources=scripts,
            meta_generators=generators,
        )

    def active_flags(self) -> List[str]:
        names = ('has_vue', 'has_react', 'has_vite', 'has_angular',
                 'has_webpack', 'has_next', 'has_nuxt', 'dev_client')
        return [name for name in names if getattr(self, name)]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildSignals":
        """Accept the camelCase form produced by browser-side probes."""
        return cls(
            has_vue=bool(data.get('hasVue', False)),
            has_react=bool(data.get('hasReact', False)),
            has_vite=bool(data.get('hasVite', False)),
            has_angular=bool(data.get('hasAngular', False)),
            has_webpack=bool(data.get('hasWebpack', False)),
            has_next=bool(data.get('hasNext', False)),
            has_nuxt=bool(data.get('hasNuxt', False)),
            dev_client=bool(data.get('devClient', False)),
            script_sources=list(data.get('scriptSources', [])),
            meta_generators=list(data.get('metaGenerators', [])),
        )


@dataclass(frozen=True)
class BuildToolFingerprint:
    """Detected toolchain of a site. Frozen once computed."""

    tool: str = UNKNOWN
    confidence: float = 0.0
    signals: Tuple[str, ...] = ()

    @property
    def is_confident(self) -> bool:
        return self.tool != UNKNOWN and self.confidence >= MIN_CONFIDENCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tool': self.tool,
            'confidence': self.confidence,
            'signals': list(self.signals),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildToolFingerprint":
        return cls(
            tool=data.get('tool', UNKNOWN),
            confidence=float(data.get('confidence', 0.0)),
            signals=tuple(data.get('signals', ())),
        )


UNKNOWN_FINGERPRINT = BuildToolFingerprint()


def _matching(scripts: Sequence[str], patterns: Sequence[str]) -> List[str]:
    """Return the patterns that occur in any script URL."""
    lowered = [s.lower() for s in scripts]
    return [p for p in patterns if any(p in s for s in lowered)]


def _matching_regex(scripts: Sequence[str], pattern: "re.Pattern") -> bool:
    return any(pattern.search(s.lower()) for s in scripts)


Inspection = Tuple[float, List[str]]


class ToolDetector:
    """
    Base class of a single-tool detector.

    Attributes:
        tool: Tool identity reported on a match
        threshold: Minimum confidence for a match
        specificity: Tie-break rank; bundler-level markers rank above
            framework-level ones
    """

    tool = UNKNOWN
    threshold = MIN_CONFIDENCE
    specificity = 0

    def inspect(self, signals: BuildSignals) -> Inspection:
        raise NotImplementedError

    def match(self, signals: BuildSignals) -> Optional[BuildToolFingerprint]:
        confidence, reasons = self.inspect(signals)
        if confidence < self.threshold:
            return None
        return BuildToolFingerprint(self.tool, confidence, tuple(reasons))


class ViteDetector(ToolDetector):
    tool = "vite"
    threshold = 0.9
    specificity = 100

    DEV_MARKERS = ('/@vite/client', '/@vite/', '/.vite/')

    def inspect(self, signals):
        reasons = []
        markers = _matching(signals.script_sources, self.DEV_MARKERS)
        if signals.dev_client or markers:
            # The dev-server client is conclusive on its own
            reasons.append('dev_client')
            reasons.extend(f'script:{m}' for m in markers)
            return 0.95, reasons
        if signals.has_vite:
            return 0.9, ['has_vite']
        if any('vite' in g.lower() for g in signals.meta_generators):
            return 0.9, ['meta:vite']
        return 0.0, reasons


class NextDetector(ToolDetector):
    tool = "next"
    specificity = 90

    def inspect(self, signals):
        scripts = _matching(signals.script_sources, ('/_next/static/',))
        if signals.has_next and scripts:
            return 0.95, ['has_next', 'script:/_next/static/']
        if signals.has_next:
            return 0.85, ['has_next']
        if scripts:
            return 0.85, ['script:/_next/static/']
        return 0.0, []


class NuxtDetector(ToolDetector):
    tool = "nuxt"
    specificity = 90

    def inspect(self, signals):
        scripts = _matching(signals.script_sources, ('/_nuxt/',))
        generator = any('nuxt' in g.lower() for g in signals.meta_generators)
        if (signals.has_nuxt or generator) and scripts:
            return 0.95, ['has_nuxt', 'script:/_nuxt/']
        if signals.has_nuxt or generator:
            return 0.85, ['has_nuxt']
        if scripts:
            return 0.85, ['script:/_nuxt/']
        return 0.0, []


class WebpackDetector(ToolDetector):
    tool = "webpack"
    specificity = 60

    PATTERNS = ('webpack', 'vendors~', 'runtime~', 'bundle.js', '/dist/')

    def inspect(self, signals):
        markers = _matching(signals.script_sources, self.PATTERNS)
        if signals.has_webpack or markers:
            reasons = ['has_webpack'] if signals.has_webpack else []
            reasons.extend(f'script:{m}' for m in markers)
            return 0.8, reasons
        return 0.0, []


class AngularCliDetector(ToolDetector):
    tool = "angular-cli"
    specificity = 50

    PATTERNS = ('polyfills', 'main.', 'runtime.')

    def inspect(self, signals):
        if not signals.has_angular:
            return 0.0, []
        markers = _matching(signals.script_sources, self.PATTERNS)
        if markers:
            return 0.9, ['has_angular'] + [f'script:{m}' for m in markers]
        return 0.8, ['has_angular']


class CreateReactAppDetector(ToolDetector):
    tool = "create-react-app"
    specificity = 50

    PATTERNS = ('runtime-main', 'static/js/', 'chunk.js')

    def inspect(self, signals):
        if not signals.has_react:
            return 0.0, []
        markers = _matching(signals.script_sources, self.PATTERNS)
        if markers:
            return 0.9, ['has_react'] + [f'script:{m}' for m in markers]
        return 0.8, ['has_react']


class VueCliDetector(ToolDetector):
    tool = "vue-cli"
    specificity = 50

    APP_BUNDLE = re.compile(r'/app\.[0-9a-f]{6,}\.js')

    def inspect(self, signals):
        if not signals.has_vue:
            return 0.0, []
        reasons = ['has_vue']
        markers = _matching(signals.script_sources, ('chunk-vendors',))
        if markers or _matching_regex(signals.script_sources, self.APP_BUNDLE):
            reasons.extend(f'script:{m}' for m in markers or ['app.<hash>.js'])
            return 0.9, reasons
        return 0.8, reasons


DEFAULT_DETECTORS: Tuple[ToolDetector, ...] = (
    ViteDetector(),
    NextDetector(),
    NuxtDetector(),
    WebpackDetector(),
    AngularCliDetector(),
    CreateReactAppDetector(),
    VueCliDetector(),
)


class BuildToolDetector:
    """
    Runs every tool detector and picks the best match.

    The highest confidence wins; equal confidences go to the more specific
    toolchain. No match gives ``unknown`` with confidence 0.
    """

    def __init__(self, detectors: Sequence[ToolDetector] = DEFAULT_DETECTORS):
        self.detectors = tuple(detectors)
        self.logger = get_logger("detector")

    def candidates(self, signals: BuildSignals) -> List[Tuple[BuildToolFingerprint, int]]:
        matches = []
        for detector in self.detectors:
            fingerprint = detector.match(signals)
            if fingerprint is not None:
                matches.append((fingerprint, detector.specificity))
        return matches

    def analyze(self, signals: BuildSignals) -> BuildToolFingerprint:
        """
        Compute the fingerprint for a set of signals.

        Args:
            signals: Evidence from the entry page

        Returns:
            The winning BuildToolFingerprint, or the unknown fingerprint
        """
        matches = self.candidates(signals)
        if not matches:
            self.logger.debug(f"No build tool matched flags={signals.active_flags()}")
            return UNKNOWN_FINGERPRINT

        best, _ = max(matches, key=lambda item: (item[0].confidence, item[1]))
        self.logger.info(
            f"Detected build tool {best.tool} (confidence {best.confidence:.2f}) "
            f"from {', '.join(best.signals)}"
        )
        return best
