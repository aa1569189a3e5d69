# SPDX-License-Identifier: Apache-2.0
"""Static word tables used by the frequency tracker.

A :class:`Lexicon` bundles a ``word -> lemma`` map, a set of common (stop)
words and a set of known proper names. The defaults below cover the verbs,
body-language nouns and function words that dominate repetitive roleplay
prose; callers with a larger dictionary pass their own tables.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Default tables
# ---------------------------------------------------------------------------

COMMON_WORDS: frozenset[str] = frozenset({
    "a", "an", "the", "and", "or", "but", "nor", "yet", "so", "for", "of", "to",
    "in", "on", "at", "by", "with", "from", "into", "onto", "upon", "over",
    "under", "about", "above", "below", "after", "before", "between", "through",
    "during", "without", "within", "against", "toward", "towards", "across",
    "around", "behind", "beside", "beyond", "off", "out", "up", "down", "back",
    "away", "again", "as", "than", "then", "if", "while", "when", "where", "why",
    "how", "what", "which", "who", "whom", "whose", "that", "this", "these",
    "those", "there", "here", "is", "am", "are", "was", "were", "be", "been",
    "being", "do", "does", "did", "doing", "done", "have", "has", "had", "having",
    "will", "would", "shall", "should", "can", "could", "may", "might", "must",
    "i", "me", "my", "mine", "myself", "you", "your", "yours", "yourself", "he",
    "him", "his", "himself", "she", "her", "hers", "herself", "it", "its",
    "itself", "we", "us", "our", "ours", "ourselves", "they", "them", "their",
    "theirs", "themselves", "not", "no", "yes", "all", "any", "both", "each",
    "every", "few", "more", "most", "other", "some", "such", "only", "own",
    "same", "too", "very", "just", "also", "still", "even", "now", "ever",
    "never", "always", "once", "one", "two", "much", "many", "something",
    "nothing", "anything", "everything", "someone", "anyone", "everyone",
    "get", "got", "go", "went", "gone", "going", "come", "came", "make", "made",
    "say", "said", "says", "see", "saw", "seen", "know", "knew", "known", "think",
    "thought", "take", "took", "taken", "want", "wanted", "like", "well", "okay",
    "oh", "ah", "um", "uh", "i'm", "you're", "he's", "she's", "it's", "we're",
    "they're", "i've", "you've", "we've", "they've", "i'd", "you'd", "he'd",
    "she'd", "we'd", "they'd", "i'll", "you'll", "he'll", "she'll", "we'll",
    "they'll", "don't", "doesn't", "didn't", "can't", "couldn't", "won't",
    "wouldn't", "shouldn't", "isn't", "aren't", "wasn't", "weren't", "hasn't",
    "haven't", "hadn't", "let's", "that's", "there's", "what's",
})

DEFAULT_NAMES: frozenset[str] = frozenset({
    "alex", "alice", "amelia", "anna", "ben", "bella", "charlie", "chloe",
    "daniel", "david", "elena", "eli", "emily", "emma", "ethan", "grace", "hannah",
    "harry", "isabella", "jack", "jacob", "james", "jane", "john", "kate", "leo",
    "liam", "lily", "lucas", "lucy", "luna", "maria", "mark", "mia", "michael",
    "noah", "oliver", "olivia", "rose", "ryan", "sam", "sarah", "sophia", "thomas",
    "william", "zoe", "user", "char", "assistant", "narrator",
})

LEMMAS: dict[str, str] = {
    # be / have / do
    "is": "be", "am": "be", "are": "be", "was": "be", "were": "be", "been": "be",
    "being": "be", "has": "have", "had": "have", "having": "have", "does": "do",
    "did": "do", "doing": "do", "done": "do",
    # irregular verbs common in narration
    "felt": "feel", "feels": "feel", "feeling": "feel",
    "gave": "give", "gives": "give", "given": "give", "giving": "give",
    "took": "take", "takes": "take", "taken": "take", "taking": "take",
    "made": "make", "makes": "make", "making": "make",
    "saw": "see", "sees": "see", "seen": "see", "seeing": "see",
    "said": "say", "says": "say", "saying": "say",
    "went": "go", "goes": "go", "gone": "go", "going": "go",
    "came": "come", "comes": "come", "coming": "come",
    "knew": "know", "knows": "know", "known": "know", "knowing": "know",
    "thought": "think", "thinks": "think", "thinking": "think",
    "held": "hold", "holds": "hold", "holding": "hold",
    "caught": "catch", "catches": "catch", "catching": "catch",
    "let": "let", "lets": "let", "letting": "let",
    "bit": "bite", "bites": "bite", "bitten": "bite", "biting": "bite",
    "drew": "draw", "draws": "draw", "drawn": "draw", "drawing": "draw",
    "ran": "run", "runs": "run", "running": "run",
    "sent": "send", "sends": "send", "sending": "send",
    "shook": "shake", "shakes": "shake", "shaken": "shake", "shaking": "shake",
    "stood": "stand", "stands": "stand", "standing": "stand",
    "sat": "sit", "sits": "sit", "sitting": "sit",
    "spoke": "speak", "speaks": "speak", "spoken": "speak", "speaking": "speak",
    "grew": "grow", "grows": "grow", "grown": "grow", "growing": "grow",
    "threw": "throw", "throws": "throw", "thrown": "throw", "throwing": "throw",
    "found": "find", "finds": "find", "finding": "find",
    "left": "leave", "leaves": "leave", "leaving": "leave",
    "kept": "keep", "keeps": "keep", "keeping": "keep",
    "brought": "bring", "brings": "bring", "bringing": "bring",
    "began": "begin", "begins": "begin", "begun": "begin", "beginning": "begin",
    "wore": "wear", "wears": "wear", "worn": "wear", "wearing": "wear",
    "rose": "rise", "rises": "rise", "risen": "rise", "rising": "rise",
    "fell": "fall", "falls": "fall", "fallen": "fall", "falling": "fall",
    "met": "meet", "meets": "meet", "meeting": "meet",
    "lay": "lie", "lies": "lie", "lain": "lie", "lying": "lie",
    "hung": "hang", "hangs": "hang", "hanging": "hang",
    "swept": "sweep", "sweeps": "sweep", "sweeping": "sweep",
    "struck": "strike", "strikes": "strike", "striking": "strike",
    "sank": "sink", "sinks": "sink", "sunk": "sink", "sinking": "sink",
    "hid": "hide", "hides": "hide", "hidden": "hide", "hiding": "hide",
    # regular verbs common in body-language slop
    "smiled": "smile", "smiles": "smile", "smiling": "smile",
    "grinned": "grin", "grins": "grin", "grinning": "grin",
    "laughed": "laugh", "laughs": "laugh", "laughing": "laugh",
    "chuckled": "chuckle", "chuckles": "chuckle", "chuckling": "chuckle",
    "sighed": "sigh", "sighs": "sigh", "sighing": "sigh",
    "nodded": "nod", "nods": "nod", "nodding": "nod",
    "smirked": "smirk", "smirks": "smirk", "smirking": "smirk",
    "blushed": "blush", "blushes": "blush", "blushing": "blush",
    "whispered": "whisper", "whispers": "whisper", "whispering": "whisper",
    "murmured": "murmur", "murmurs": "murmur", "murmuring": "murmur",
    "glanced": "glance", "glances": "glance", "glancing": "glance",
    "looked": "look", "looks": "look", "looking": "look",
    "stared": "stare", "stares": "stare", "staring": "stare",
    "gazed": "gaze", "gazes": "gaze", "gazing": "gaze",
    "leaned": "lean", "leans": "lean", "leaning": "lean", "leant": "lean",
    "tilted": "tilt", "tilts": "tilt", "tilting": "tilt",
    "raised": "raise", "raises": "raise", "raising": "raise",
    "narrowed": "narrow", "narrows": "narrow", "narrowing": "narrow",
    "widened": "widen", "widens": "widen", "widening": "widen",
    "shivered": "shiver", "shivers": "shiver", "shivering": "shiver",
    "trembled": "tremble", "trembles": "tremble", "trembling": "tremble",
    "tightened": "tighten", "tightens": "tighten", "tightening": "tighten",
    "clenched": "clench", "clenches": "clench", "clenching": "clench",
    "washed": "wash", "washes": "wash", "washing": "wash",
    "crashed": "crash", "crashes": "crash", "crashing": "crash",
    "breathed": "breathe", "breathes": "breathe", "breathing": "breathe",
    "walked": "walk", "walks": "walk", "walking": "walk",
    "turned": "turn", "turns": "turn", "turning": "turn",
    "reached": "reach", "reaches": "reach", "reaching": "reach",
    "pressed": "press", "presses": "press", "pressing": "press",
    "pulled": "pull", "pulls": "pull", "pulling": "pull",
    "pushed": "push", "pushes": "push", "pushing": "push",
    "touched": "touch", "touches": "touch", "touching": "touch",
    "traced": "trace", "traces": "trace", "tracing": "trace",
    "brushed": "brush", "brushes": "brush", "brushing": "brush",
    "mustered": "muster", "musters": "muster", "mustering": "muster",
    "helped": "help", "helps": "help", "helping": "help",
    "wanted": "want", "wants": "want", "wanting": "want",
    "seemed": "seem", "seems": "seem", "seeming": "seem",
    "waited": "wait", "waits": "wait", "waiting": "wait",
    "watched": "watch", "watches": "watch", "watching": "watch",
    "dripped": "drip", "drips": "drip", "dripping": "drip",
    "echoed": "echo", "echoes": "echo", "echoing": "echo",
    "hitched": "hitch", "hitches": "hitch", "hitching": "hitch",
    "quickened": "quicken", "quickens": "quicken", "quickening": "quicken",
    "softened": "soften", "softens": "soften", "softening": "soften",
    # nouns
    "eyes": "eye", "hands": "hand", "lips": "lip", "cheeks": "cheek",
    "shoulders": "shoulder", "fingers": "finger", "arms": "arm", "legs": "leg",
    "feet": "foot", "teeth": "tooth", "waves": "wave",
    "breaths": "breath",
    "voices": "voice", "words": "word", "moments": "moment", "hearts": "heart",
    "spines": "spine", "tears": "tear",
}


# ---------------------------------------------------------------------------
# Lexicon
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Lexicon:
    """Word tables consulted while building and scoring n-grams."""

    lemmas: Mapping[str, str] = field(default_factory=lambda: dict(LEMMAS))
    common_words: frozenset[str] = COMMON_WORDS
    names: frozenset[str] = DEFAULT_NAMES

    @classmethod
    def from_tables(
        cls,
        lemmas: Mapping[str, str] | None = None,
        common_words: Iterable[str] | None = None,
        names: Iterable[str] | None = None,
    ) -> Lexicon:
        return cls(
            lemmas={k.lower(): v.lower() for k, v in (lemmas if lemmas is not None else LEMMAS).items()},
            common_words=frozenset(w.lower() for w in (common_words if common_words is not None else COMMON_WORDS)),
            names=frozenset(w.lower() for w in (names if names is not None else DEFAULT_NAMES)),
        )

    def lemmatize(self, word: str) -> str:
        return self.lemmas.get(word, word)

    def effective_whitelist(self, user_whitelist: Iterable[str] = ()) -> frozenset[str]:
        """Common words, known names and the caller's whitelist, lower-cased."""
        return self.common_words | self.names | frozenset(w.lower() for w in user_whitelist)


DEFAULT_LEXICON = Lexicon()
