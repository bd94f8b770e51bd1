from .models import CalculationConfig, Location, PrayerTimeTable
from .service import PrayerTimesService
from .schedule import next_prayer
from .dispatcher import NotificationDispatcher
from .audio_manager import AudioResourceManager
