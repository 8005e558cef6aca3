"""Static classification data.

Keyword table, legitimate-domain patterns and the closed label set shared by
the heuristic classifier and the external classifier prompt.  This module is
data only; matching rules live in
``wayback_meta.services.classification.service``.
"""

from __future__ import annotations

CLEAN_LABEL = "Clean"
SUSPECT_LABEL = "Suspect"

#: Category -> keywords, scanned in insertion order; first hit wins.
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Gambling": (
        "casino",
        "poker",
        "bet",
        "slot",
        "roulette",
        "jackpot",
        "blackjack",
        "lottery",
        "bingo",
        "sportsbook",
    ),
    "Adult": (
        "porn",
        "xxx",
        "sex",
        "escort",
        "nude",
        "cam",
        "hookup",
        "dating",
    ),
    "Pharma": (
        "viagra",
        "cialis",
        "pharmacy",
        "kamagra",
        "pills",
        "rx",
        "steroid",
        "weight loss",
    ),
    "Suspicious finance": (
        "crypto",
        "bitcoin",
        "forex",
        "payday",
        "loan",
        "get rich",
        "binary option",
        "airdrop",
    ),
    "Counterfeit": (
        "replica",
        "knockoff",
        "fake watch",
        "cheap rolex",
        "designer outlet",
    ),
    "Piracy": (
        "crack",
        "keygen",
        "warez",
        "torrent",
        "nulled",
        "serial key",
        "apk mod",
    ),
    "Generic spam": (
        "click here",
        "free money",
        "you won",
        "limited offer",
        "buy now",
    ),
}

#: Regular expressions matched against the domain name only.  Any hit
#: short-circuits classification to ``CLEAN_LABEL``.
LEGITIMATE_PATTERNS: tuple[str, ...] = (
    # sports
    r"sport",
    r"football",
    r"soccer",
    r"rugby",
    r"tennis",
    # news
    r"news",
    r"journal",
    r"times",
    r"press",
    # government / education
    r"\.gov(\.|$)",
    r"\.gouv\.",
    r"\.edu(\.|$)",
    r"\.ac\.",
    r"univ",
    # brands
    r"google",
    r"microsoft",
    r"apple",
    r"amazon",
    r"wikipedia",
    r"github",
    # technology
    r"tech",
    r"software",
    r"cloud",
    r"developer",
)

#: Closed label set accepted from the external classifier.
ALLOWED_LABELS: tuple[str, ...] = (
    CLEAN_LABEL,
    *CATEGORY_KEYWORDS,
    "E-commerce",
    "Blog/Info",
    "Tech",
    "News",
)

SUSPICIOUS_CATEGORIES: frozenset[str] = frozenset(
    [*CATEGORY_KEYWORDS, SUSPECT_LABEL]
)

CLASSIFIER_PROMPT = """Analyze this website based on its title and description, then categorize it:

Title: "{title}"
Description: "{description}"
Domain: {domain}

Categorize this site into ONE of these categories:
- Clean: Professional, legitimate business or informational sites
- Gambling: Gambling, betting, casino sites
- Adult: Adult content, dating, explicit material
- Pharma: Pharmacy, medication, health supplements (often suspicious)
- Suspicious finance: Crypto, forex trading, payday loans, get-rich schemes
- Counterfeit: Fake designer goods, replica products
- Piracy: Software cracks, keygens, pirated content
- Generic spam: Generic spam with clickbait titles
- E-commerce: Legitimate online stores, shopping sites
- Blog/Info: Blogs and informational content
- Tech: Technology, software, development sites
- News: News and media sites

Focus on detecting spam/suspicious content. Respond with ONLY the category name (e.g., "Clean" or "Gambling")."""
