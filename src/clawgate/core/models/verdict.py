"""InjectionVerdict 领域模型

每次扫描产生新的 verdict，只在消费它的决策内使用，不持久化。
"""

from pydantic import BaseModel, ConfigDict, Field

from .enums import Severity, ThreatKind


class ThreatDescriptor(BaseModel):
    """单个检测器命中的描述"""

    model_config = ConfigDict(frozen=True)

    kind: ThreatKind = Field(description="检测器类型")
    pattern_id: str = Field(description="命中的模式标识")
    severity: Severity = Field(description="严重度")
    span: tuple[int, int] = Field(description="规范化文本中的命中区间 [start, end)")
    excerpt: str = Field(default="", description="命中片段（截断，用于审计）")
    field: str = Field(default="", description="来源字段名")


class InjectionVerdict(BaseModel):
    """注入扫描结果

    flagged 当且仅当至少一个检测器命中；干净内容 confidence == 0。
    """

    model_config = ConfigDict(frozen=True)

    flagged: bool = Field(default=False)
    threats: list[ThreatDescriptor] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    context: str = Field(default="", description="扫描上下文标签")
    scanned_chars: int = Field(default=0, ge=0, description="实际扫描的字符数")
    truncated: bool = Field(default=False, description="输入是否超出扫描上限被截断")

    @property
    def threat_kinds(self) -> list[str]:
        return [t.kind.value for t in self.threats]


CLEAN_VERDICT = InjectionVerdict()
