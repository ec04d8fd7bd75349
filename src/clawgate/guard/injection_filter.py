"""InjectionFilter -- 不可信文本的注入检测

规范化（删除不可见字符、折叠全角与易混淆字符）后，按固定顺序运行检测器。
每个命中的检测器产生一个 ThreatDescriptor；置信度由 score() 计算。

纯函数：无 I/O、不记录日志，对任何输入都返回 verdict。
"""

import re
import unicodedata
from collections.abc import Mapping

from clawgate.core.config import GateConfig
from clawgate.core.models import (
    SEVERITY_ORDER,
    InjectionVerdict,
    Severity,
    ThreatDescriptor,
    ThreatKind,
)

from .patterns import (
    DETECTOR_PATTERNS,
    ENCODED_PAYLOAD_PATTERNS,
    HOMOGLYPH_PATTERNS,
    HOMOGLYPHS,
    INVISIBLE_CHARS,
    LONG_BASE64_PATTERN,
    LONG_BASE64_SEVERITY,
    RAW_DETECTOR_PATTERNS,
    PatternSpec,
)

_FLAGS = re.IGNORECASE | re.MULTILINE
_EXCERPT_CHARS = 48

_STRIP_TABLE = str.maketrans("", "", INVISIBLE_CHARS)
_HOMOGLYPH_TABLE = str.maketrans(HOMOGLYPHS)

_CompiledPattern = tuple[str, re.Pattern[str], Severity]


def _compile(specs: list[PatternSpec], flags: int = _FLAGS) -> list[_CompiledPattern]:
    return [(pattern_id, re.compile(regex, flags), severity) for pattern_id, regex, severity in specs]


_TEXT_DETECTORS = [(kind, _compile(specs)) for kind, specs in DETECTOR_PATTERNS]
_RAW_DETECTORS = [(kind, _compile(specs, 0)) for kind, specs in RAW_DETECTOR_PATTERNS]
_ENCODED_PATTERNS = _compile(ENCODED_PAYLOAD_PATTERNS)
_LONG_BASE64 = re.compile(LONG_BASE64_PATTERN)
_HOMOGLYPH_DETECTOR = _compile(HOMOGLYPH_PATTERNS, 0)


def normalize(text: str) -> str:
    """删除不可见字符，NFKC 折叠全角，易混淆字符映射为拉丁"""
    stripped = text.translate(_STRIP_TABLE)
    return unicodedata.normalize("NFKC", stripped).translate(_HOMOGLYPH_TABLE)


def coerce_text(content: object) -> str:
    """把任意输入转为可扫描文本，不抛异常"""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, bytes | bytearray | memoryview):
        return bytes(content).decode("utf-8", errors="replace")
    try:
        return str(content)
    except Exception:
        # 自定义 __str__ 失败时按空文本处理
        return ""


def score(
    threats: list[ThreatDescriptor],
    weights: Mapping[Severity, float],
    multi_hit_bonus: float,
) -> float:
    """confidence = min(1, Σw × (1 + bonus × (n − 1)))

    单调且超加性：多一个命中永远不会降低分数。
    """
    if not threats:
        return 0.0
    total = sum(weights[t.severity] for t in threats)
    boosted = total * (1.0 + multi_hit_bonus * (len(threats) - 1))
    return round(min(1.0, boosted), 4)


class InjectionFilter:
    """注入检测器集合"""

    def __init__(self, config: GateConfig) -> None:
        self._config = config

    def sanitize(self, content: object, context: str = "") -> InjectionVerdict:
        """扫描单段文本

        Args:
            content: 待扫描内容，None / bytes / 任意对象均可
            context: 上下文标签，原样写入 verdict

        Returns:
            InjectionVerdict
        """
        text = coerce_text(content)
        limit = self._config.scan_limit_chars
        truncated = len(text) > limit
        raw = text[:limit]

        threats = self._detect(raw)
        return InjectionVerdict(
            flagged=bool(threats),
            threats=threats,
            confidence=score(threats, self._config.severity_weights, self._config.multi_hit_bonus),
            context=context,
            scanned_chars=len(raw),
            truncated=truncated,
        )

    def sanitize_fields(self, fields: Mapping[str, object], context: str = "") -> InjectionVerdict:
        """扫描多个字段并合并为一个 verdict

        合并后的 threats 携带字段名，置信度按全部命中重新计算。
        """
        threats: list[ThreatDescriptor] = []
        scanned = 0
        truncated = False
        for name, value in fields.items():
            verdict = self.sanitize(value, context)
            scanned += verdict.scanned_chars
            truncated = truncated or verdict.truncated
            threats.extend(t.model_copy(update={"field": name}) for t in verdict.threats)

        return InjectionVerdict(
            flagged=bool(threats),
            threats=threats,
            confidence=score(threats, self._config.severity_weights, self._config.multi_hit_bonus),
            context=context,
            scanned_chars=scanned,
            truncated=truncated,
        )

    def _detect(self, raw: str) -> list[ThreatDescriptor]:
        if not raw:
            return []
        text = normalize(raw)
        by_kind: dict[ThreatKind, ThreatDescriptor] = {}

        for kind, patterns in _TEXT_DETECTORS:
            if hit := _first_hit(kind, patterns, text):
                by_kind[kind] = hit
        for kind, patterns in _RAW_DETECTORS:
            if hit := _first_hit(kind, patterns, raw):
                by_kind[kind] = hit
        if hit := _detect_encoded(text):
            by_kind[ThreatKind.ENCODED_PAYLOAD] = hit
        if hit := _first_hit(ThreatKind.HOMOGLYPH_OBFUSCATION, _HOMOGLYPH_DETECTOR, raw):
            by_kind[ThreatKind.HOMOGLYPH_OBFUSCATION] = hit

        # 按检测器声明顺序输出
        return [by_kind[kind] for kind in ThreatKind if kind in by_kind]


def _first_hit(
    kind: ThreatKind,
    patterns: list[_CompiledPattern],
    text: str,
) -> ThreatDescriptor | None:
    """检测器内取严重度最高的命中，同级取最靠前的"""
    best: tuple[int, int, str, Severity, re.Match[str]] | None = None
    for pattern_id, regex, severity in patterns:
        match = regex.search(text)
        if match is None:
            continue
        rank = (-SEVERITY_ORDER.index(severity), match.start())
        if best is None or rank < best[:2]:
            best = (*rank, pattern_id, severity, match)
    if best is None:
        return None
    _, _, pattern_id, severity, match = best
    return _descriptor(kind, pattern_id, severity, match)


def _detect_encoded(text: str) -> ThreatDescriptor | None:
    hit = _first_hit(ThreatKind.ENCODED_PAYLOAD, _ENCODED_PATTERNS, text)
    if hit is not None:
        return hit
    # 长 base64 需同时含大小写与数字，排除十六进制哈希等
    for match in _LONG_BASE64.finditer(text):
        candidate = match.group(0)
        if (
            any(c.isupper() for c in candidate)
            and any(c.islower() for c in candidate)
            and any(c.isdigit() for c in candidate)
        ):
            return _descriptor(ThreatKind.ENCODED_PAYLOAD, "long_base64", LONG_BASE64_SEVERITY, match)
    return None


def _descriptor(
    kind: ThreatKind,
    pattern_id: str,
    severity: Severity,
    match: re.Match[str],
) -> ThreatDescriptor:
    excerpt = "".join(c if c.isprintable() else "?" for c in match.group(0)[:_EXCERPT_CHARS])
    return ThreatDescriptor(
        kind=kind,
        pattern_id=pattern_id,
        severity=severity,
        span=(match.start(), match.end()),
        excerpt=excerpt,
    )
