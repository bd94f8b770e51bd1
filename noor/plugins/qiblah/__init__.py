from .bearing import qiblah_bearing
