from resume_core.api.server import run_api

if __name__ == "__main__":
    run_api()
