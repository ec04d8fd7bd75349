"""注入检测模式 -- 单一事实来源

每个检测器由 (ThreatKind, 模式列表) 组成，模式为 (pattern_id, regex, severity)。
DETECTOR_PATTERNS 的顺序即检测顺序。
文本类检测器运行在规范化后的文本上；RAW_DETECTOR_PATTERNS 运行在原始文本上，
用于发现规范化会抹掉的痕迹（控制字符、不可见字符、混合书写系统）。
"""

from clawgate.core.models import Severity, ThreatKind

_L = Severity.LOW
_M = Severity.MEDIUM
_H = Severity.HIGH
_C = Severity.CRITICAL

PatternSpec = tuple[str, str, Severity]

DETECTOR_PATTERNS: list[tuple[ThreatKind, list[PatternSpec]]] = [
    (
        ThreatKind.INSTRUCTION_OVERRIDE,
        [
            (
                "ignore_previous",
                r"\bignore\s+(?:all\s+|any\s+|the\s+|your\s+)*(?:previous|prior|earlier|above|"
                r"preceding|existing)\s+(?:instructions?|rules?|guidelines?|directions?|"
                r"prompts?|messages?|commands?)",
                _H,
            ),
            (
                "disregard_previous",
                r"\bdisregard\s+(?:all\s+|any\s+|the\s+)*(?:previous|prior|earlier|above|your)\s+"
                r"(?:instructions?|rules?|guidelines?|directions?|prompts?|programming)",
                _H,
            ),
            (
                "forget_previous",
                r"\bforget\s+(?:all\s+|everything\s+|any\s+)*(?:previous|prior|earlier|"
                r"you\s+(?:were|have\s+been)\s+told)",
                _H,
            ),
            (
                "override_safety",
                r"\b(?:override|bypass|disable|circumvent)\s+(?:all\s+|the\s+|your\s+|any\s+)*"
                r"(?:security|safety|restrictions?|filters?|guardrails?|safeguards?)",
                _H,
            ),
            ("new_instructions", r"\b(?:new|updated|real|actual)\s+instructions?\s*:", _M),
            (
                "from_now_on",
                r"\bfrom\s+now\s+on,?\s+(?:you\s+(?:will|must|are|should)|ignore|only|always)",
                _M,
            ),
        ],
    ),
    (
        ThreatKind.SYSTEM_PROMPT_EXFILTRATION,
        [
            (
                "reveal_system_prompt",
                r"\b(?:tell|show|give|reveal|print|repeat|output|display|share|leak|dump)\s+"
                r"(?:me\s+|us\s+)?(?:your|the)\s+(?:full\s+|entire\s+|original\s+|hidden\s+|"
                r"initial\s+|secret\s+)?(?:system\s+prompt|system\s+message|system\s+instructions|"
                r"instructions|initial\s+prompt|hidden\s+prompt|prompt)",
                _H,
            ),
            (
                "ask_instructions",
                r"\bwhat\s+(?:are|were|is)\s+(?:your|the)\s+(?:initial|original|system|hidden|"
                r"secret)\s+(?:instructions|prompt|rules)",
                _H,
            ),
            (
                "repeat_above",
                r"\b(?:repeat|print|output|copy)\s+(?:everything|all\s+(?:the\s+)?text|all\s+of\s+this)"
                r"\s+(?:above|before|so\s+far)",
                _M,
            ),
        ],
    ),
    (
        ThreatKind.ROLE_MANIPULATION,
        [
            ("you_are_now", r"\byou\s+are\s+now\s+(?:a|an|in|the|my|no\s+longer)\b", _M),
            ("new_role", r"\byour\s+(?:new\s+)?role\s+(?:is|has\s+changed|will\s+be)", _M),
            ("pretend", r"\bpretend\s+(?:that\s+)?(?:you(?:'re|\s+are)|to\s+be)", _M),
            ("act_as", r"\bact\s+as\s+(?:if\s+you|an?\s+unrestricted|my\s+admin|the\s+system)", _M),
            (
                "mode_switch",
                r"\b(?:enter|switch\s+to|activate|enable|turn\s+on)\s+(?:admin|debug|developer|"
                r"maintenance|god|sudo|root|unrestricted)\s+mode",
                _H,
            ),
        ],
    ),
    (
        ThreatKind.JAILBREAK,
        [
            ("dan_mode", r"\bdan\b[^.\n]{0,40}\bmode\b", _H),
            ("do_anything_now", r"\bdo\s+anything\s+now\b", _H),
            ("jailbreak", r"\bjail\s*br(?:eak|oken)\b", _H),
            (
                "no_restrictions",
                r"\b(?:without|free\s+(?:of|from)|no\s+longer\s+bound\s+by)\s+(?:any\s+)?"
                r"(?:restrictions|limitations|content\s+polic(?:y|ies)|guidelines|filters)\b",
                _M,
            ),
        ],
    ),
    (
        ThreatKind.FAKE_AUTHORIZATION,
        [
            ("pre_authorized", r"\bpre-?(?:authori[sz]ed|approved)\b", _H),
            (
                "owner_approved",
                r"\bthe\s+(?:user|owner|admin(?:istrator)?|boss)\s+(?:has\s+)?(?:already\s+)?"
                r"(?:approved|authori[sz]ed|confirmed|consented|signed\s+off)",
                _H,
            ),
            (
                "already_approved",
                r"\b(?:this|it|the\s+(?:action|request|transfer))\s+(?:is|has\s+been|was)\s+"
                r"(?:already\s+)?(?:approved|authori[sz]ed|confirmed)\b",
                _H,
            ),
            ("permission_granted", r"\bpermission\s+(?:has\s+been\s+|was\s+|is\s+)?granted\b", _M),
            ("confirm_action", r"\bconfirm\s+(?:send|execute|delete|transfer|payment)\b", _M),
            (
                "skip_confirmation",
                r"\b(?:skip|bypass|no\s+need\s+for|without\s+(?:any\s+)?)\s*(?:the\s+)?"
                r"(?:confirmation|approval|verification|2fa|two[- ]factor)\b",
                _C,
            ),
        ],
    ),
    (
        ThreatKind.ANTI_TRANSPARENCY,
        [
            (
                "do_not_tell",
                r"\b(?:do\s+not|don'?t|never)\s+(?:inform|tell|notify|alert|warn)\s+"
                r"(?:the\s+)?(?:user|owner)",
                _H,
            ),
            ("hide_from", r"\bhide\s+(?:this|it|these)\s+from\b", _H),
            ("silently", r"\bsilently\s+(?:execute|run|send|forward|delete|transfer|do)\b", _H),
            (
                "without_notifying",
                r"\bwithout\s+(?:notifying|telling|informing|alerting|asking)\s+(?:the\s+)?"
                r"(?:user|owner)",
                _H,
            ),
            (
                "erase_trace",
                r"\b(?:delete|erase|remove)\s+(?:this|the)\s+(?:email|message|conversation)\s+"
                r"(?:after|once)\b",
                _M,
            ),
        ],
    ),
    (
        ThreatKind.SECRET_SOLICITATION,
        [
            (
                "share_confirmation_code",
                r"\b(?:send|forward|share|reply\s+with|give|tell|paste)\s+(?:me\s+|us\s+)?"
                r"(?:the\s+|your\s+|both\s+)?(?:confirmation|verification|security|one[- ]time|"
                r"2fa|otp|approval|dual)\s+(?:codes?|passwords?|passcodes?|pins?|tokens?)",
                _C,
            ),
            (
                "password_pair",
                r"\b(?:passwords?|passcodes?|codes?)\s+a\s+(?:and|&)\s+(?:passwords?\s+|"
                r"passcodes?\s+|codes?\s+)?b\b",
                _H,
            ),
            (
                "share_credentials",
                r"\b(?:send|forward|share|reveal|give|email)\s+(?:me\s+|us\s+)?(?:the\s+|your\s+)?"
                r"(?:api\s+keys?|credentials|passwords?|secrets?|private\s+keys?|access\s+tokens?)\b",
                _H,
            ),
        ],
    ),
    (
        ThreatKind.DELIMITER_INJECTION,
        [
            ("bracket_role", r"\[\s*(?:system|admin|override|assistant|developer|inst)\s*\]", _M),
            ("tag_role", r"<\s*/?\s*(?:system|admin|assistant|developer|instructions?)\s*>", _M),
            ("hash_role", r"#{2,}\s*(?:system|instructions?|admin)\s*:", _M),
            (
                "chat_template_token",
                r"<\|(?:im_start|im_end|system|endoftext|start_header_id|end_header_id|eot_id)\|>",
                _H,
            ),
            ("role_prefix_line", r"^\s*(?:system|assistant|developer)\s*:\s*\S", _M),
            ("fence_role", r"```\s*(?:system|instructions?)\b", _M),
        ],
    ),
]

RAW_DETECTOR_PATTERNS: list[tuple[ThreatKind, list[PatternSpec]]] = [
    (
        ThreatKind.ESCAPE_SEQUENCE,
        [
            ("ansi_escape", r"\x1b(?:\[[0-9;?]*[A-Za-z]|\][^\x07]{0,256})", _M),
            ("literal_ansi_escape", r"(?:\\x1b|\\u001b|\\033|\\e)\[[0-9;]*[A-Za-z]", _M),
            ("bidi_override", "[‪-‮⁦-⁩]", _H),
            ("control_char", r"[\x00-\x08\x0b\x0c\x0e-\x1a\x1c-\x1f\x7f]", _M),
            ("invisible_char", "[​‌‍⁠﻿­͏؜᠎⠀]", _L),
        ],
    ),
]

# 编码载荷检测器在规范化文本上运行，长 base64 需要额外的字符类判定
ENCODED_PAYLOAD_PATTERNS: list[PatternSpec] = [
    ("hex_escapes", r"(?:\\x[0-9a-fA-F]{2}){8,}", _M),
    ("unicode_escapes", r"(?:\\u[0-9a-fA-F]{4}){6,}", _M),
    (
        "decode_call",
        r"\b(?:frombase64string|b64decode|atob|bytes\.fromhex|unescape)\s*\(|\bbase64\s+(?:-d|--decode)\b",
        _M,
    ),
    ("data_uri", r"\bdata:[\w/+.-]{1,64};base64,", _M),
]

LONG_BASE64_PATTERN = r"[A-Za-z0-9+/]{48,}={0,2}"
LONG_BASE64_SEVERITY = _M

# 混合书写系统：拉丁字母与西里尔 / 希腊字母在同一词内相邻
HOMOGLYPH_PATTERNS: list[PatternSpec] = [
    (
        "mixed_script",
        "[A-Za-z][Ͱ-ϿЀ-ӿ]|[Ͱ-ϿЀ-ӿ][A-Za-z]",
        _M,
    ),
    ("fullwidth_run", "[！-～]{3,}", _L),
]

# 规范化时删除的不可见字符与双向控制符
INVISIBLE_CHARS = (
    "​‌‍⁠﻿­͏؜᠎⠀"
    "‪‫‬‭‮⁦⁧⁨⁩"
)

# 西里尔 / 希腊易混淆字符 -> 拉丁
HOMOGLYPHS: dict[str, str] = {
    "а": "a", "е": "e", "о": "o", "р": "p",
    "с": "c", "у": "y", "х": "x", "і": "i",
    "ѕ": "s", "ј": "j", "һ": "h", "ԁ": "d",
    "А": "A", "Е": "E", "О": "O", "Р": "P",
    "С": "C", "Т": "T", "Х": "X", "Н": "H",
    "М": "M", "К": "K", "В": "B",
    "ο": "o", "α": "a", "ε": "e", "ι": "i",
    "Ο": "O", "Α": "A", "Ε": "E",
}
