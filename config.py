SOFT_NAME = "Rules Manager"

#============================= TG BOT SETTINGS ===================================

MANAGER_TG_BOT_TOKEN = ''
MANAGER_TG_BOT_IDS = [
    '',
    #''
]

#============================= RULE SETTINGS =====================================

RULE_NAME_MIN_LENGTH = 3
RULE_NAME_MAX_LENGTH = 50

RULES_PER_PAGE = 8 #rules per page in the list screen
PENDING_INPUT_TTL = 300 #seconds a rename / custom value prompt stays valid

#============================= CALLBACK SETTINGS =================================

CALLBACK_DATA_LIMIT = 64 #telegram callback_data limit, bytes
CALLBACK_DELIMITER = '_'

#=============================FILE PATHS========================================

RULES_DATA_BASE_PATH = 'database/'

RULES_DB_PATH = RULES_DATA_BASE_PATH + 'rules.json'

DEFAULT_LOGS_FILE = 'logs.txt'
LOGS_SIZE = '10 MB'
