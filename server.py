#!/usr/bin/env python3
from flask import Flask, request, jsonify
from werkzeug.utils import secure_filename
import time
import os
from extractor import extract_constants, MODE, MODES, HEADER_LINES

app = Flask(__name__)

UPLOADPATH = 'uploads'

# results of the most recent upload
CURRENTRESULTS = {}
ANALYSIS_TIME = 0
FILES_PROCESSED = 0

@app.route('/')
def index():
    return jsonify({'mode': MODE, 'modes': list(MODES), 'header_lines': HEADER_LINES,
        'files_processed': FILES_PROCESSED})

def extractAndSave(filepath, funcName, mode, scoped):
    '''
    extract constants from an uploaded listing, then remove it
    '''
    try:
        return extract_constants(filepath, funcName or None, mode=mode, scoped=scoped)
    finally:
        os.remove(filepath)

@app.route('/upload', methods = ['POST'])
def upload_file():
    global CURRENTRESULTS, ANALYSIS_TIME, FILES_PROCESSED

    funcName = request.form.get('function', '')
    mode = request.form.get('mode', MODE)
    scoped = request.form.get('scoped', '') in ('1', 'true', 'yes')

    if mode not in MODES:
        return jsonify({'message': f'unknown mode {mode}', 'success': 0}), 400
    if scoped and not funcName:
        return jsonify({'message': 'scoped extraction needs a function name', 'success': 0}), 400

    os.makedirs(UPLOADPATH, exist_ok=True)
    analysisStart = time.time()
    results = {}

    for f in request.files.getlist('files[]'):
        if f.filename != "":
            filename = secure_filename(f.filename)
            if not filename:
                return jsonify({'message': f'invalid filename {f.filename}', 'success': 0}), 400
            safepath = os.path.join(UPLOADPATH, filename)
            f.save(safepath)
            results[filename] = extractAndSave(safepath, funcName, mode, scoped)
            FILES_PROCESSED += 1

    if not results:
        return jsonify({'message': 'no files uploaded', 'success': 0}), 400

    CURRENTRESULTS = results
    ANALYSIS_TIME = time.time() - analysisStart
    return jsonify({'results': results, 'success': 1})

@app.route('/report')
def report():
    '''
    results of the last upload
    '''
    return jsonify({'analysis_time': ANALYSIS_TIME, 'results': CURRENTRESULTS})


if __name__ == '__main__':
    app.run(debug = True)
