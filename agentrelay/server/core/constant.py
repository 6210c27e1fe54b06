PROJECT_NAME = "agentrelay"
API_V1_STR = "/api/v1"
