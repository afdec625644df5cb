# stable identifiers for every inference rule, cited in matched entries for auditability

from __future__ import annotations

RULE_ALLERGY_MATCH = "allergy_match"
RULE_CROSS_REACTIVE = "cross_reactive"
RULE_MEDICATION_INTERACTION = "medication_interaction"

RULE_CODE_ALLERGEN_MATCH = "AA-RULE-AL-001"
RULE_CODE_CROSS_REACTIVE = "AA-RULE-CR-001"
RULE_CODE_MED_INTERACTION = "AA-RULE-MI-001"

RULE_CODES: dict[str, str] = {
    RULE_ALLERGY_MATCH: RULE_CODE_ALLERGEN_MATCH,
    RULE_CROSS_REACTIVE: RULE_CODE_CROSS_REACTIVE,
    RULE_MEDICATION_INTERACTION: RULE_CODE_MED_INTERACTION,
}


def rule_code_for(rule: str) -> str | None:
    return RULE_CODES.get(rule)
