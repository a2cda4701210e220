"""
レベル設定
英語レベルごとの語彙・文法の制約と、台本生成用の指示文を提供する
"""
from kidspeak.models.schemas import LevelPolicy, ProficiencyLevel


LEVEL_POLICIES: dict[ProficiencyLevel, LevelPolicy] = {
    ProficiencyLevel.STARTER: LevelPolicy(
        label="Starter",
        description="Beginner - Very basic words",
        vocabulary_size=50,
        min_sentence_words=3,
        max_sentence_words=5,
        grammar=[
            "Only simple present tense (I am, I have, I like)",
            "No complex grammar",
        ],
        connectors=[],
        example="This is my dog. I like my dog. My dog is brown.",
        min_script_words=30,
        max_script_words=50,
    ),
    ProficiencyLevel.A1: LevelPolicy(
        label="A1",
        description="Elementary - Basic phrases",
        vocabulary_size=100,
        min_sentence_words=5,
        max_sentence_words=7,
        grammar=["Present tense", "Basic adjectives"],
        connectors=["and", "but"],
        example="Hello, my name is Anna. I have a pet dog. The dog is brown and fluffy.",
        min_script_words=50,
        max_script_words=80,
    ),
    ProficiencyLevel.MOVER: LevelPolicy(
        label="Mover",
        description="Young learner - Everyday words",
        vocabulary_size=150,
        min_sentence_words=5,
        max_sentence_words=8,
        grammar=["Present and simple past tense allowed"],
        connectors=["and", "but", "because"],
        example="Hello everyone. Today I want to talk about my pet. I have a cat. My cat is cute and fluffy.",
        min_script_words=60,
        max_script_words=100,
    ),
    ProficiencyLevel.A2: LevelPolicy(
        label="A2",
        description="Pre-Intermediate - Simple sentences",
        vocabulary_size=200,
        min_sentence_words=7,
        max_sentence_words=10,
        grammar=["Past and present tense allowed"],
        connectors=["and", "but", "because", "then"],
        example="Good morning everyone. Today I want to talk about my family. We went to the park yesterday.",
        min_script_words=80,
        max_script_words=120,
    ),
    ProficiencyLevel.FLYER: LevelPolicy(
        label="Flyer",
        description="Young learner - Descriptive words",
        vocabulary_size=250,
        min_sentence_words=8,
        max_sentence_words=12,
        grammar=["All basic tenses allowed (present, past, future)"],
        connectors=["and", "but", "because", "so", "then", "when"],
        example=(
            "Good morning everyone. I am going to tell you about my favorite place. "
            "Last weekend, I went to the zoo with my family."
        ),
        min_script_words=100,
        max_script_words=150,
    ),
    ProficiencyLevel.B1: LevelPolicy(
        label="B1",
        description="Intermediate - Complex ideas",
        vocabulary_size=400,
        min_sentence_words=10,
        max_sentence_words=15,
        grammar=["All tenses allowed", "Relative clauses"],
        connectors=["although", "however", "therefore"],
        example=(
            "Hello everyone, I would like to present about my favorite holiday. "
            "Last summer, my family visited the beach, which was truly amazing."
        ),
        min_script_words=120,
        max_script_words=180,
    ),
    ProficiencyLevel.B2: LevelPolicy(
        label="B2",
        description="Upper-Intermediate - Rich language",
        vocabulary_size=600,
        min_sentence_words=12,
        max_sentence_words=20,
        grammar=[
            "All tenses, passive voice, conditionals allowed",
            "Use descriptive language with metaphors and similes when appropriate",
        ],
        connectors=["furthermore", "nevertheless", "consequently", "whereas"],
        example=(
            "Good morning everyone. Today, I would like to share my thoughts on environmental protection, "
            "which has become increasingly important in our modern society."
        ),
        min_script_words=180,
        max_script_words=250,
    ),
}


def get_level_policy(level: ProficiencyLevel) -> LevelPolicy:
    """
    レベルに対応する制約を取得

    Args:
        level: 英語レベル

    Returns:
        レベルの制約
    """
    return LEVEL_POLICIES[ProficiencyLevel(level)]


def build_level_instructions(level: ProficiencyLevel) -> str:
    """
    台本生成プロンプトに埋め込むレベル別の指示文を作成

    Args:
        level: 英語レベル

    Returns:
        箇条書きの指示文
    """
    policy = get_level_policy(level)
    lines: list[str] = [
        f"- Use only about {policy.vocabulary_size} of the most common vocabulary words",
        f"- Sentences: {policy.min_sentence_words}-{policy.max_sentence_words} words maximum",
    ]
    lines.extend(f"- {rule}" for rule in policy.grammar)
    if policy.connectors:
        lines.append(f"- Connectors: {', '.join(policy.connectors)}")
    else:
        lines.append("- No conjunctions")
    lines.append(f'- Example: "{policy.example}"')
    lines.append(
        f"- Total script: {policy.min_script_words}-{policy.max_script_words} words maximum"
    )
    return "\n".join(lines)
