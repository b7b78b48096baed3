"""都道府県・地域・市町村のマスターデータと、市町村→都道府県の解決。

都道府県の並び順は北海道から沖縄県までの固定順で、名前順や件数順に並べ替えない。
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from .schemas import Municipality, Prefecture

REGIONS: Tuple[Tuple[str, str], ...] = (
    ("hokkaido", "北海道"),
    ("tohoku", "東北"),
    ("kanto", "関東"),
    ("chubu", "中部"),
    ("kinki", "近畿"),
    ("chugoku", "中国"),
    ("shikoku", "四国"),
    ("kyushu", "九州・沖縄"),
)

# 画面側の地域ドロップダウンで使われる別名
REGION_ALIASES: Dict[str, str] = {
    "kyushu-okinawa": "kyushu",
    "okinawa-kyushu": "kyushu",
    "kansai": "kinki",
}

PREFECTURES: Tuple[Prefecture, ...] = tuple(
    Prefecture(name=name, slug=slug, region=region)
    for name, slug, region in (
        # 北海道・東北
        ("北海道", "hokkaido", "hokkaido"),
        ("青森県", "aomori", "tohoku"),
        ("岩手県", "iwate", "tohoku"),
        ("宮城県", "miyagi", "tohoku"),
        ("秋田県", "akita", "tohoku"),
        ("山形県", "yamagata", "tohoku"),
        ("福島県", "fukushima", "tohoku"),
        # 関東
        ("茨城県", "ibaraki", "kanto"),
        ("栃木県", "tochigi", "kanto"),
        ("群馬県", "gunma", "kanto"),
        ("埼玉県", "saitama", "kanto"),
        ("千葉県", "chiba", "kanto"),
        ("東京都", "tokyo", "kanto"),
        ("神奈川県", "kanagawa", "kanto"),
        # 中部
        ("新潟県", "niigata", "chubu"),
        ("富山県", "toyama", "chubu"),
        ("石川県", "ishikawa", "chubu"),
        ("福井県", "fukui", "chubu"),
        ("山梨県", "yamanashi", "chubu"),
        ("長野県", "nagano", "chubu"),
        ("岐阜県", "gifu", "chubu"),
        ("静岡県", "shizuoka", "chubu"),
        ("愛知県", "aichi", "chubu"),
        # 近畿
        ("三重県", "mie", "kinki"),
        ("滋賀県", "shiga", "kinki"),
        ("京都府", "kyoto", "kinki"),
        ("大阪府", "osaka", "kinki"),
        ("兵庫県", "hyogo", "kinki"),
        ("奈良県", "nara", "kinki"),
        ("和歌山県", "wakayama", "kinki"),
        # 中国
        ("鳥取県", "tottori", "chugoku"),
        ("島根県", "shimane", "chugoku"),
        ("岡山県", "okayama", "chugoku"),
        ("広島県", "hiroshima", "chugoku"),
        ("山口県", "yamaguchi", "chugoku"),
        # 四国
        ("徳島県", "tokushima", "shikoku"),
        ("香川県", "kagawa", "shikoku"),
        ("愛媛県", "ehime", "shikoku"),
        ("高知県", "kochi", "shikoku"),
        # 九州・沖縄
        ("福岡県", "fukuoka", "kyushu"),
        ("佐賀県", "saga", "kyushu"),
        ("長崎県", "nagasaki", "kyushu"),
        ("熊本県", "kumamoto", "kyushu"),
        ("大分県", "oita", "kyushu"),
        ("宮崎県", "miyazaki", "kyushu"),
        ("鹿児島県", "kagoshima", "kyushu"),
        ("沖縄県", "okinawa", "kyushu"),
    )
)

_BY_SLUG: Dict[str, Prefecture] = {p.slug: p for p in PREFECTURES}

# 都道府県別の市町村マスター（初期投入用）
MUNICIPALITY_MASTER: Dict[str, Tuple[str, ...]] = {
    "hokkaido": ("札幌市", "函館市", "小樽市", "旭川市", "室蘭市", "釧路市", "帯広市", "北見市", "夕張市", "岩見沢市"),
    "aomori": ("青森市", "弘前市", "八戸市", "黒石市", "五所川原市", "つがる市", "平川市"),
    "iwate": ("盛岡市", "宮古市", "大船渡市", "花巻市", "北上市", "久慈市", "遠野市", "一関市", "陸前高田市"),
    "miyagi": ("仙台市", "石巻市", "塩竈市", "気仙沼市", "白石市", "名取市", "角田市", "多賀城市", "岩沼市", "登米市"),
    "akita": ("秋田市", "能代市", "横手市", "大館市", "男鹿市", "湯沢市", "鹿角市", "由利本荘市", "にかほ市"),
    "yamagata": ("山形市", "米沢市", "鶴岡市", "酒田市", "新庄市", "寒河江市", "上山市", "村山市", "長井市"),
    "fukushima": ("福島市", "会津若松市", "郡山市", "いわき市", "白河市", "須賀川市", "喜多方市", "相馬市"),
    "ibaraki": ("水戸市", "日立市", "土浦市", "古河市", "石岡市", "結城市", "龍ケ崎市", "下妻市", "常総市"),
    "tochigi": ("宇都宮市", "足利市", "栃木市", "佐野市", "鹿沼市", "日光市", "小山市", "真岡市", "大田原市"),
    "gunma": ("前橋市", "高崎市", "桐生市", "伊勢崎市", "太田市", "沼田市", "館林市", "渋川市", "藤岡市"),
    "saitama": ("さいたま市", "川越市", "熊谷市", "川口市", "行田市", "秩父市", "所沢市", "飯能市", "加須市", "本庄市"),
    "chiba": ("千葉市", "銚子市", "市川市", "船橋市", "館山市", "木更津市", "松戸市", "野田市", "茂原市", "成田市"),
    "tokyo": (
        "千代田区", "中央区", "港区", "新宿区", "文京区", "台東区", "墨田区", "江東区", "品川区", "目黒区",
        "大田区", "世田谷区", "渋谷区", "中野区", "杉並区", "豊島区", "北区", "荒川区", "板橋区", "練馬区",
        "足立区", "葛飾区", "江戸川区", "八王子市", "立川市", "武蔵野市", "三鷹市", "青梅市", "府中市",
        "昭島市", "調布市",
    ),
    "kanagawa": ("横浜市", "川崎市", "相模原市", "横須賀市", "平塚市", "鎌倉市", "藤沢市", "小田原市", "茅ヶ崎市", "逗子市"),
    "niigata": ("新潟市", "長岡市", "三条市", "柏崎市", "新発田市", "小千谷市", "加茂市", "十日町市", "見附市"),
    "toyama": ("富山市", "高岡市", "魚津市", "氷見市", "滑川市", "黒部市", "砺波市", "小矢部市", "南砺市"),
    "ishikawa": ("金沢市", "七尾市", "小松市", "輪島市", "珠洲市", "加賀市", "羽咋市", "かほく市", "白山市"),
    "fukui": ("福井市", "敦賀市", "小浜市", "大野市", "勝山市", "鯖江市", "あわら市", "越前市"),
    "yamanashi": ("甲府市", "富士吉田市", "都留市", "山梨市", "大月市", "韮崎市", "南アルプス市", "北杜市"),
    "nagano": ("長野市", "松本市", "上田市", "岡谷市", "飯田市", "諏訪市", "須坂市", "小諸市", "伊那市"),
    "gifu": ("岐阜市", "大垣市", "高山市", "多治見市", "関市", "中津川市", "美濃市", "瑞浪市", "羽島市"),
    "shizuoka": ("静岡市", "浜松市", "沼津市", "熱海市", "三島市", "富士宮市", "伊東市", "島田市", "富士市"),
    "aichi": ("名古屋市", "豊橋市", "岡崎市", "一宮市", "瀬戸市", "半田市", "春日井市", "豊川市", "津島市"),
    "mie": ("津市", "四日市市", "伊勢市", "松阪市", "桑名市", "鈴鹿市", "名張市", "尾鷲市", "亀山市"),
    "shiga": ("大津市", "彦根市", "長浜市", "近江八幡市", "草津市", "守山市", "栗東市", "甲賀市", "野洲市"),
    "kyoto": ("京都市", "福知山市", "舞鶴市", "綾部市", "宇治市", "宮津市", "亀岡市", "城陽市", "向日市"),
    "osaka": ("大阪市", "堺市", "岸和田市", "豊中市", "池田市", "吹田市", "泉大津市", "高槻市", "貝塚市"),
    "hyogo": ("神戸市", "姫路市", "尼崎市", "明石市", "西宮市", "洲本市", "芦屋市", "伊丹市", "相生市"),
    "nara": ("奈良市", "大和高田市", "大和郡山市", "天理市", "橿原市", "桜井市", "五條市", "御所市"),
    "wakayama": ("和歌山市", "海南市", "橋本市", "有田市", "御坊市", "田辺市", "新宮市", "紀の川市"),
    "tottori": ("鳥取市", "米子市", "倉吉市", "境港市"),
    "shimane": ("松江市", "浜田市", "出雲市", "益田市", "大田市", "安来市", "江津市", "雲南市"),
    "okayama": ("岡山市", "倉敷市", "津山市", "玉野市", "笠岡市", "井原市", "総社市", "高梁市", "新見市"),
    "hiroshima": ("広島市", "呉市", "竹原市", "三原市", "尾道市", "福山市", "府中市", "三次市", "庄原市"),
    "yamaguchi": ("下関市", "宇部市", "山口市", "萩市", "防府市", "下松市", "岩国市", "光市", "長門市"),
    "tokushima": ("徳島市", "鳴門市", "小松島市", "阿南市", "吉野川市", "阿波市", "美馬市", "三好市"),
    "kagawa": ("高松市", "丸亀市", "坂出市", "善通寺市", "観音寺市", "さぬき市", "東かがわ市", "三豊市"),
    "ehime": ("松山市", "今治市", "宇和島市", "八幡浜市", "新居浜市", "西条市", "大洲市", "伊予市"),
    "kochi": ("高知市", "室戸市", "安芸市", "南国市", "土佐市", "須崎市", "宿毛市", "土佐清水市"),
    "fukuoka": ("北九州市", "福岡市", "大牟田市", "久留米市", "直方市", "飯塚市", "田川市", "柳川市"),
    "saga": ("佐賀市", "唐津市", "鳥栖市", "多久市", "伊万里市", "武雄市", "鹿島市", "小城市"),
    "nagasaki": ("長崎市", "佐世保市", "島原市", "諫早市", "大村市", "平戸市", "松浦市", "対馬市"),
    "kumamoto": ("熊本市", "八代市", "人吉市", "荒尾市", "水俣市", "玉名市", "山鹿市", "菊池市"),
    "oita": ("大分市", "別府市", "中津市", "日田市", "佐伯市", "臼杵市", "津久見市", "竹田市"),
    "miyazaki": ("宮崎市", "都城市", "延岡市", "日南市", "小林市", "日向市", "串間市", "西都市"),
    "kagoshima": ("鹿児島市", "鹿屋市", "枕崎市", "阿久根市", "出水市", "指宿市", "西之表市", "垂水市"),
    "okinawa": ("那覇市", "宜野湾市", "石垣市", "浦添市", "名護市", "糸満市", "沖縄市", "豊見城市"),
}

PREFECTURE_LEVEL_SUFFIX = "-prefecture-level"


class MunicipalityLookup(Protocol):
    def get_municipality(self, slug: str) -> Optional[Municipality]:
        ...


def get_prefecture(slug: str) -> Optional[Prefecture]:
    return _BY_SLUG.get(slug)


def normalize_region(region: Optional[str]) -> Optional[str]:
    """地域スラッグを正規化します。未知の値は None。"""
    if not region:
        return None
    region = region.strip().lower()
    region = REGION_ALIASES.get(region, region)
    return region if any(slug == region for slug, _ in REGIONS) else None


def prefectures_in_region(region: str) -> List[str]:
    """地域に属する都道府県スラッグを固定順で返します。"""
    region = normalize_region(region)
    return [p.slug for p in PREFECTURES if p.region == region]


def prefecture_level_slug(prefecture_slug: str) -> str:
    return prefecture_slug + PREFECTURE_LEVEL_SUFFIX


def municipality_slug(prefecture_slug: str, name: str) -> str:
    """市町村スラッグ（{都道府県}-{名前}）を作ります。名前部分は小文字化と空白のハイフン化のみ。"""
    title = unicodedata.normalize("NFKC", name).strip().lower()
    title = re.sub(r"[\s/]+", "-", title)
    return "{}-{}".format(prefecture_slug, title)


def infer_prefecture(name: str) -> Optional[str]:
    """表示名の先頭が都道府県名と一致すれば、その都道府県スラッグを返します。

    「東京都渋谷区」→ tokyo。固定順で最初に一致したものを採用します。
    名前の偶然の一致までは区別できないため、あくまで推定です。
    """
    if not name:
        return None
    name = unicodedata.normalize("NFKC", name).strip()
    for prefecture in PREFECTURES:
        if name.startswith(prefecture.name):
            return prefecture.slug
    return None


@dataclass
class LocationScope:
    """市町村フィルターの OR 条件: 市町村に一致 OR 所属都道府県に一致。"""

    municipality_slugs: List[str] = field(default_factory=list)
    prefecture_slugs: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)


def resolve_location(municipality_slugs: Iterable[str], taxonomy: MunicipalityLookup) -> LocationScope:
    """選択された市町村から、都道府県レベルの助成金も拾えるよう所属都道府県を解決します。

    1. 市町村に明示的な親都道府県があればそれを使う
    2. 無ければ表示名の先頭一致で推定する
    3. どちらでも解決できない市町村は市町村リストにだけ残す（エラーにはしない）
    """
    scope = LocationScope()
    for slug in municipality_slugs:
        if slug in scope.municipality_slugs:
            continue
        scope.municipality_slugs.append(slug)

        municipality = taxonomy.get_municipality(slug)
        prefecture_slug = None
        if municipality is not None:
            prefecture_slug = municipality.prefecture_slug or infer_prefecture(municipality.name)

        if prefecture_slug is None:
            logging.debug("Could not resolve prefecture for municipality %r", slug)
            scope.unresolved.append(slug)
        elif prefecture_slug not in scope.prefecture_slugs:
            scope.prefecture_slugs.append(prefecture_slug)
    return scope
