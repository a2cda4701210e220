"""
テーマカタログとテーマ選択
"""
from kidspeak.models.schemas import Theme
from kidspeak.services.errors import ThemeValidationError


PREDEFINED_THEMES: list[Theme] = [
    Theme(id="zoo", label="Zoo animals", icon="🦁", description="Lions, monkeys and elephants at the zoo"),
    Theme(id="family", label="My family", icon="👨‍👩‍👧", description="Mum, dad, brothers and sisters"),
    Theme(id="pets", label="My pet", icon="🐶", description="Dogs, cats and other friends at home"),
    Theme(id="school", label="My school", icon="🏫", description="Classroom, teacher and friends"),
    Theme(id="beach", label="At the beach", icon="🏖️", description="Sand, sea and sunshine"),
    Theme(id="food", label="Favourite food", icon="🍕", description="Yummy things to eat"),
    Theme(id="park", label="In the park", icon="🌳", description="Playing outside with friends"),
    Theme(id="birthday", label="Birthday party", icon="🎂", description="Cake, balloons and presents"),
    Theme(id="farm", label="On the farm", icon="🐄", description="Cows, chickens and tractors"),
    Theme(id="space", label="Space trip", icon="🚀", description="Rockets, stars and planets"),
    Theme(id="toys", label="My toys", icon="🧸", description="Teddy bears, cars and blocks"),
    Theme(id="weather", label="The weather", icon="🌦️", description="Sunny, rainy and snowy days"),
]


def find_theme(theme_id: str) -> Theme | None:
    """IDからカタログのテーマを検索"""
    for theme in PREDEFINED_THEMES:
        if theme.id == theme_id:
            return theme
    return None


class ThemeSelection:
    """
    テーマの選択状態

    カタログからの選択と自由入力は排他的で、一方を設定するともう一方はクリアされる。
    """

    def __init__(self, selected: Theme | None = None, custom_text: str = "") -> None:
        self.selected: Theme | None = selected
        self.custom_text: str = custom_text

    def select_theme(self, theme: Theme) -> None:
        """カタログのテーマを選択（自由入力はクリア）"""
        self.selected = theme
        self.custom_text = ""

    def set_custom_text(self, text: str) -> None:
        """自由入力を設定（カタログの選択はクリア）"""
        self.custom_text = text
        self.selected = None

    def clear(self) -> None:
        self.selected = None
        self.custom_text = ""

    @property
    def theme_text(self) -> str | None:
        """
        生成に使うテーマ文字列

        Returns:
            カタログのテーマか自由入力のどちらか一方だけがある場合はその文字列、
            それ以外はNone
        """
        custom = self.custom_text.strip()
        if self.selected is not None and custom:
            return None
        if self.selected is not None:
            return self.selected.label
        return custom or None

    def require_text(self) -> str:
        """
        テーマ文字列を取得（ない場合は例外）

        Raises:
            ThemeValidationError: テーマが決まっていない場合
        """
        text = self.theme_text
        if text is None:
            raise ThemeValidationError("テーマを1つ選ぶか、自由に入力してください")
        return text
