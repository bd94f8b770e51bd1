import pytest
import responses

from noor.core.store import NOT_FOUND
from noor.plugins.quran.quran_api import QURAN_API_BASE, AlQuranCloudClient, QuranAPIError
from noor.plugins.quran.service import AYAHS_COLLECTION, QuranService

SURAHS = [
    {"number": 1, "name": "سُورَةُ ٱلْفَاتِحَةِ", "englishName": "Al-Faatiha", "englishNameTranslation": "The Opening", "numberOfAyahs": 7, "revelationType": "Meccan"},
    {"number": 112, "name": "سُورَةُ الإِخْلَاصِ", "englishName": "Al-Ikhlaas", "englishNameTranslation": "Sincerity", "numberOfAyahs": 4, "revelationType": "Meccan"},
]


def surah_payload(texts):
    return {
        "code": 200,
        "status": "OK",
        "data": {
            "number": 112,
            "ayahs": [
                {"number": 6221 + i, "numberInSurah": i + 1, "juz": 30, "text": text, "audio": f"https://cdn/{i}.mp3"}
                for i, text in enumerate(texts)
            ],
        },
    }


@pytest.fixture
def service(store):
    return QuranService(store, AlQuranCloudClient())


def test_fetch_surah_merges_translation():
    client = AlQuranCloudClient()
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, f"{QURAN_API_BASE}/surah/112/ar.alafasy", json=surah_payload(["a1", "a2"]))
        mock.add(responses.GET, f"{QURAN_API_BASE}/surah/112/en.sahih", json=surah_payload(["Say, He is Allah", "Allah, the Eternal"]))
        ayahs = client.fetch_surah_ayahs(112)

    assert [a["text"] for a in ayahs] == ["a1", "a2"]
    assert ayahs[1]["translation"] == "Allah, the Eternal"
    assert ayahs[0]["audio"] == "https://cdn/0.mp3"


def test_bad_payload_is_an_error():
    client = AlQuranCloudClient()
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, f"{QURAN_API_BASE}/surah", json={"code": 404, "status": "Not Found"})
        with pytest.raises(QuranAPIError):
            client.fetch_surahs()


def test_surah_list_is_sorted_by_number(service):
    service.save_surahs(list(reversed(SURAHS)))
    assert [s["number"] for s in service.get_surahs()] == [1, 112]
    assert not service.get_surah(112)["is_downloaded"]


def test_content_and_flag_are_written_together(service, store):
    service.save_surahs(SURAHS)
    ayahs = [{"number": 6222, "numberInSurah": 2, "text": "b"}, {"number": 6221, "numberInSurah": 1, "text": "a"}]
    service.save_surah_content(112, ayahs)

    content = service.get_surah_content(112)
    assert [a["numberInSurah"] for a in content] == [1, 2]
    assert content[0]["id"] == "112_1"
    assert content[0]["surahNumber"] == 112
    assert service.is_downloaded(112)

    # A later list refresh keeps the downloaded flag
    service.save_surahs(SURAHS)
    assert service.is_downloaded(112)

    service.remove_surah_content(112)
    assert service.get_surah_content(112) == []
    assert store.get(AYAHS_COLLECTION, "112_1") is NOT_FOUND
    assert not service.is_downloaded(112)


def test_failed_save_leaves_nothing_behind(service, store):
    service.save_surahs(SURAHS)
    broken = [{"number": 6221, "numberInSurah": 1, "text": "a"}, {"number": 6222, "text": "no position"}]
    with pytest.raises(KeyError):
        service.save_surah_content(112, broken)

    assert store.get(AYAHS_COLLECTION, "112_1") is NOT_FOUND
    assert not service.is_downloaded(112)


def test_remove_does_not_touch_other_surahs(service):
    service.save_surahs(SURAHS)
    service.save_surah_content(1, [{"number": 1, "numberInSurah": 1, "text": "x"}])
    service.save_surah_content(112, [{"number": 6221, "numberInSurah": 1, "text": "y"}])
    service.remove_surah_content(1)
    assert len(service.get_surah_content(112)) == 1
    assert service.is_downloaded(112)


def test_download_surah(service):
    service.save_surahs(SURAHS)
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, f"{QURAN_API_BASE}/surah/112/ar.alafasy", json=surah_payload(["a1"]))
        mock.add(responses.GET, f"{QURAN_API_BASE}/surah/112/en.sahih", json=surah_payload(["t1"]))
        content = service.download_surah(112)

    assert content[0]["translation"] == "t1"
    assert service.is_downloaded(112)


def test_download_before_list_sync_marks_surah_downloaded(service):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, f"{QURAN_API_BASE}/surah/112/ar.alafasy", json=surah_payload(["a1", "a2"]))
        mock.add(responses.GET, f"{QURAN_API_BASE}/surah/112/en.sahih", json=surah_payload(["t1", "t2"]))
        service.download_surah(112)

    assert service.is_downloaded(112)
    assert service.get_surah(112)["numberOfAyahs"] == 2
    assert not service.has_full_list()

    # The later list sync fills in metadata and keeps the flag
    service.save_surahs(SURAHS)
    assert service.get_surah(112)["englishName"] == "Al-Ikhlaas"
    assert service.is_downloaded(112)
