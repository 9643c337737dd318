import logging
import os

import cv2
import numpy as np
from scipy.io import loadmat

from ShapeSpace import Bbox2Rect, Rect2Bbox, ShapeBounds, RatioRectShapeOverlap, TightRectToDetectorRect

logger=logging.getLogger(__name__)

param_max_image_size=2048
param_image_extensions=('.jpg', '.jpeg', '.png', '.bmp')

################### shape ###################
# load shape points file (ibug .pts)
def ReadShape(path):
    lines=open(path).read().splitlines()
    num=None
    shape=[]
    inside=False
    for line in lines:
        line=line.strip()
        if line.startswith('n_points'):
            num=int(line.split(':')[1])
        elif line=='{':
            inside=True
        elif line=='}':
            break
        elif inside and line:
            pair=line.split()
            shape.append([float(pair[0]), float(pair[1])])
    if num is not None and len(shape)!=num:
        raise ValueError('%s declares %d points but holds %d' % (path, num, len(shape)))
    return np.array(shape)

################### image ###################
# grayscale image, downscaled so that its longer side is at most max_size
def LoadImage(path, max_size=param_max_image_size):
    img=cv2.imread(path, cv2.IMREAD_GRAYSCALE)
    if img is None or img.size==0:
        return None, 1.0
    h, w=img.shape
    scale=min(1.0, float(max_size)/max(h, w))
    if scale<1.0:
        img=cv2.resize(img, (max(1, int(round(w*scale))), max(1, int(round(h*scale)))), interpolation=cv2.INTER_AREA)
    return img.astype(np.float32), scale

def _LoadPairs(image_paths, max_size, with_names=False):
    images=[]
    shapes=[]
    scalings=[]
    names=[]
    skipped=0
    unlabeled=0
    for path in image_paths:
        pts=os.path.splitext(path)[0]+'.pts'
        if not os.path.exists(pts):
            unlabeled+=1
            logger.info('skipping image without landmarks %s', path)
            continue
        img, scale=LoadImage(path, max_size)
        if img is None:
            skipped+=1
            logger.warning('skipping unreadable image %s', path)
            continue
        images.append(img)
        shapes.append(ReadShape(pts)*scale)
        scalings.append(scale)
        names.append(os.path.basename(path))
    logger.info('loaded %d images, skipped %d unreadable, %d without landmarks', len(images), skipped, unlabeled)
    if with_names:
        return images, shapes, scalings, names
    return images, shapes, scalings

# every image in directory that comes with a .pts file next to it
def LoadDatabase(directory, max_size=param_max_image_size, with_names=False):
    paths=sorted(os.path.join(directory, f) for f in os.listdir(directory)
                 if os.path.splitext(f)[1].lower() in param_image_extensions)
    return _LoadPairs(paths, max_size, with_names)

# images listed line by line in list_file, relative to root
def LoadImageList(root, list_file, max_size=param_max_image_size, with_names=False):
    names=[l.strip() for l in open(list_file).readlines() if l.strip()]
    return _LoadPairs([os.path.join(root, n) for n in names], max_size, with_names)

######################## rects ##########################
# {image name: [x1,y1,x2,y2] boxes} from a 300-W style bounding box .mat file
def LoadBBox(path):
    boxes={}
    file=loadmat(path)['bounding_boxes'][0]
    for info in file:
        img_boxes=list(info[0][0])
        img_name=str(img_boxes[0][0])
        boxes[img_name]=np.array([box[0] for box in img_boxes[1:]])
    return boxes

# rect per image from the boxes of its .mat entry, boxes are in original image coords
def ChooseBoxes(boxes, names, images, shapes, scalings, min_overlap=0.3, match_detector=True):
    rects=[]
    found=0
    for i in range(len(images)):
        faces=[Bbox2Rect(b)*scalings[i] for b in boxes.get(names[i], [])]
        rect, ok=ChooseRect(faces, shapes[i], images[i].shape, min_overlap, match_detector)
        found+=ok
        rects.append(rect)
    logger.info('bounding box found for %d/%d shapes', found, len(images))
    return rects

def LoadDetectors(paths):
    detectors=[]
    for path in paths:
        detector=cv2.CascadeClassifier(path)
        if detector.empty():
            raise IOError('failed to load detector %s' % path)
        detectors.append(detector)
    return detectors

# face rects of all detectors
def DetectFaces(image, detectors, scale_factor=1.1, min_neighbors=3):
    img=np.clip(image, 0, 255).astype(np.uint8)
    faces=[]
    for detector in detectors:
        for x, y, w, h in detector.detectMultiScale(img, scaleFactor=scale_factor, minNeighbors=min_neighbors):
            faces.append(Bbox2Rect([x, y, x+w, y+h]))
    return faces

# best overlapping detection, tight bounds adjusted to look like a detection otherwise
def ChooseRect(faces, shape, image_shape, min_overlap=0.3, match_detector=True):
    best=None
    best_overlap=0.0
    for face in faces:
        o=RatioRectShapeOverlap(face, shape)
        if o>best_overlap:
            best=face
            best_overlap=o
    if best is not None and best_overlap>=min_overlap:
        return best, True
    rect=ShapeBounds(shape)
    if match_detector:
        rect=TightRectToDetectorRect(rect, image_shape)
    return rect, False

# rect per image from detectors, in the frame of the loaded (possibly downscaled) image
def GenerateRects(images, shapes, detectors, min_overlap=0.3, match_detector=True):
    rects=[]
    detected=0
    for i in range(len(images)):
        rect, ok=ChooseRect(DetectFaces(images[i], detectors), shapes[i], images[i].shape, min_overlap, match_detector)
        detected+=ok
        rects.append(rect)
    logger.info('detector successful on %d/%d shapes', detected, len(images))
    return rects

# rects are written in original image coords when the loading scalings are given
def ExportRects(path, rects, scalings=None):
    if scalings is not None:
        rects=[r/s for r, s in zip(rects, scalings)]
    np.savetxt(path, np.array([Rect2Bbox(r) for r in rects]).reshape(-1, 4), delimiter=',', fmt='%.6f')

# scalings maps rects from original image coords back onto the loaded images
def ImportRects(path, scalings=None):
    rects=[Bbox2Rect(b) for b in np.loadtxt(path, delimiter=',', ndmin=2)]
    if scalings is not None:
        if len(scalings)!=len(rects):
            raise ValueError('%s holds %d rects for %d images' % (path, len(rects), len(scalings)))
        rects=[r*s for r, s in zip(rects, scalings)]
    return rects
