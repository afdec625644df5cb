# in-repo default knowledge base
# hand-curated; every list stays sorted and duplicate-free (see knowledge/guardrails.py)
# bump the matching version string whenever a list below changes

from __future__ import annotations

DEFAULT_TAXONOMY_VERSION = "12.6"
DEFAULT_REGISTRY_VERSION = "10g.1"

ALLERGEN_TAXONOMY: dict[str, dict[str, object]] = {
    "tree_nut": {
        "label": "Tree Nut",
        "children": [
            "almond",
            "brazil nut",
            "cashew",
            "hazelnut",
            "macadamia",
            "pecan",
            "pine nut",
            "pistachio",
            "walnut",
        ],
    },
    "shellfish": {
        "label": "Shellfish",
        "children": ["crab", "lobster", "mussel", "oyster", "scallop", "shrimp"],
    },
    "legume": {
        "label": "Legume",
        "children": ["chickpea", "lentil", "pea", "peanut", "soy"],
    },
    "fish": {
        "label": "Fish",
        "children": ["anchovy", "cod", "haddock", "salmon", "sardine", "tilapia", "tuna"],
    },
    "sesame": {
        "label": "Sesame",
        "children": ["sesame", "tahini"],
    },
    "egg": {
        "label": "Egg",
        "children": ["egg", "egg white", "egg yolk"],
    },
    "dairy": {
        "label": "Dairy",
        "children": ["butter", "casein", "cheese", "milk", "whey", "yogurt"],
    },
    "wheat": {
        "label": "Wheat",
        "children": ["bread", "flour", "gluten", "pasta", "wheat"],
    },
    "soy": {
        "label": "Soy",
        "children": ["edamame", "soy", "soy sauce", "soya", "soybean", "tempeh", "tofu"],
    },
}

# severity weight per category (0-100); direct terms such as peanut may carry their own entry
ALLERGEN_SEVERITY: dict[str, int] = {
    "dairy": 80,
    "egg": 85,
    "fish": 90,
    "legume": 60,
    "peanut": 95,
    "sesame": 85,
    "shellfish": 95,
    "soy": 65,
    "tree_nut": 90,
    "wheat": 70,
}

# parent pairs allowed to share a child term
ALLOWED_OVERLAPS: list[tuple[str, str]] = [
    ("legume", "soy"),
]

# secondary, lower-confidence associations; surfaced as medium risk only
CROSS_REACTIVE_REGISTRY: list[dict[str, object]] = [
    {"source": "tree_nut", "related": ["coconut", "mango", "pink peppercorn"], "riskModifier": 10},
    {"source": "latex", "related": ["avocado", "banana", "kiwi"], "riskModifier": 15},
    {"source": "birch_pollen", "related": ["apple", "carrot"], "riskModifier": 10},
]

# canonical id -> exact spellings that resolve to it (no plural inference on these)
ALIASES: dict[str, list[str]] = {
    "chickpea": ["garbanzo", "garbanzo bean", "garbanzo beans"],
    "hazelnut": ["filbert", "filberts"],
    "mango": ["mangoes"],
    "shrimp": ["prawn", "prawns"],
    "soybean": ["soy bean", "soy beans"],
    "yogurt": ["yoghurt", "yoghurts"],
}

FUNCTIONAL_CLASS_REGISTRY: dict[str, dict[str, list[str] | str]] = {
    "anticoagulants": {
        "label": "Anticoagulant / Blood Thinner",
        "terms": [
            "apixaban",
            # herbal hint, flagged but not pharma-grade
            "ashwagandha",
            "aspirin",
            "clopidogrel",
            "coumadin",
            "eliquis",
            "enoxaparin",
            "heparin",
            "lovenox",
            "plavix",
            "rivaroxaban",
            "warfarin",
            "xarelto",
        ],
        "examples": ["aspirin", "eliquis", "plavix", "warfarin"],
    },
    "nsaids": {
        "label": "NSAID",
        "terms": [
            "advil",
            "aleve",
            "aspirin",
            "celebrex",
            "celecoxib",
            "diclofenac",
            "ibuprofen",
            "indocin",
            "indomethacin",
            "meloxicam",
            "mobic",
            "motrin",
            "naproxen",
            "voltaren",
        ],
        "examples": ["advil", "aleve", "ibuprofen", "naproxen"],
    },
    "proton_pump_inhibitors": {
        "label": "Proton Pump Inhibitor",
        "terms": [
            "aciphex",
            "esomeprazole",
            "lansoprazole",
            "nexium",
            "omeprazole",
            "pantoprazole",
            "prevacid",
            "prilosec",
            "protonix",
            "rabeprazole",
        ],
        "examples": ["nexium", "omeprazole", "prilosec"],
    },
    "stimulant_laxatives": {
        "label": "Stimulant Laxative",
        "terms": ["bisacodyl", "cascara", "dulcolax", "senna", "sennosides", "senokot"],
        "examples": ["bisacodyl", "dulcolax", "senna"],
    },
}
