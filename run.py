import os
from cmslookup import create_app

app = create_app()

if __name__ == '__main__':
    # Debug/reloader off by default; a reload mid-scan would orphan CMSeeK.
    debug_flag = os.environ.get('CMSLOOKUP_DEBUG_SERVER', '0') == '1'
    port = int(os.environ.get('CMSLOOKUP_PORT', '8080'))
    app.run(host='0.0.0.0', port=port, debug=debug_flag, use_reloader=debug_flag)
