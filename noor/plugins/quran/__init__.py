from .service import QuranService
