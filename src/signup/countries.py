"""
Bilingual country table used to resolve spoken country answers.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Country:
    code: str
    name: str
    name_ar: str


COUNTRIES: tuple[Country, ...] = (
    # GCC first so partial matches prefer them.
    Country("QA", "Qatar", "قطر"),
    Country("SA", "Saudi Arabia", "السعودية"),
    Country("AE", "United Arab Emirates", "الإمارات"),
    Country("KW", "Kuwait", "الكويت"),
    Country("BH", "Bahrain", "البحرين"),
    Country("OM", "Oman", "عمان"),
    Country("EG", "Egypt", "مصر"),
    Country("JO", "Jordan", "الأردن"),
    Country("LB", "Lebanon", "لبنان"),
    Country("SY", "Syria", "سوريا"),
    Country("IQ", "Iraq", "العراق"),
    Country("PS", "Palestine", "فلسطين"),
    Country("YE", "Yemen", "اليمن"),
    Country("SD", "Sudan", "السودان"),
    Country("LY", "Libya", "ليبيا"),
    Country("TN", "Tunisia", "تونس"),
    Country("DZ", "Algeria", "الجزائر"),
    Country("MA", "Morocco", "المغرب"),
    Country("MR", "Mauritania", "موريتانيا"),
    Country("SO", "Somalia", "الصومال"),
    Country("TR", "Turkey", "تركيا"),
    Country("IR", "Iran", "إيران"),
    Country("PK", "Pakistan", "باكستان"),
    Country("IN", "India", "الهند"),
    Country("BD", "Bangladesh", "بنغلاديش"),
    Country("LK", "Sri Lanka", "سريلانكا"),
    Country("NP", "Nepal", "نيبال"),
    Country("PH", "Philippines", "الفلبين"),
    Country("ID", "Indonesia", "إندونيسيا"),
    Country("MY", "Malaysia", "ماليزيا"),
    Country("CN", "China", "الصين"),
    Country("JP", "Japan", "اليابان"),
    Country("KR", "South Korea", "كوريا الجنوبية"),
    Country("AU", "Australia", "أستراليا"),
    Country("NZ", "New Zealand", "نيوزيلندا"),
    Country("GB", "United Kingdom", "المملكة المتحدة"),
    Country("IE", "Ireland", "أيرلندا"),
    Country("FR", "France", "فرنسا"),
    Country("DE", "Germany", "ألمانيا"),
    Country("IT", "Italy", "إيطاليا"),
    Country("ES", "Spain", "إسبانيا"),
    Country("PT", "Portugal", "البرتغال"),
    Country("NL", "Netherlands", "هولندا"),
    Country("BE", "Belgium", "بلجيكا"),
    Country("CH", "Switzerland", "سويسرا"),
    Country("SE", "Sweden", "السويد"),
    Country("NO", "Norway", "النرويج"),
    Country("RU", "Russia", "روسيا"),
    Country("US", "United States", "الولايات المتحدة"),
    Country("CA", "Canada", "كندا"),
    Country("MX", "Mexico", "المكسيك"),
    Country("BR", "Brazil", "البرازيل"),
    Country("AR", "Argentina", "الأرجنتين"),
    Country("NG", "Nigeria", "نيجيريا"),
    Country("KE", "Kenya", "كينيا"),
    Country("ET", "Ethiopia", "إثيوبيا"),
    Country("ZA", "South Africa", "جنوب أفريقيا"),
)
