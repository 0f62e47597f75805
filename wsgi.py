# wsgi.py
import os

from dotenv import load_dotenv
load_dotenv()

# Set environment variables if not set
if not os.getenv('FLASK_APP'):
    os.environ['FLASK_APP'] = 'wsgi'
if not os.getenv('FLASK_ENV'):
    os.environ['FLASK_ENV'] = 'production'

from telebill import create_app

application = create_app()
app = application

if __name__ == "__main__":
    app.run(debug=False, host='0.0.0.0', port=5000)
